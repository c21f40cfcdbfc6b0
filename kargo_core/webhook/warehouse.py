"""Admission webhook for Warehouses.

Subscriptions are validated when a Warehouse is written so that selection can
assume well formed tag patterns and semver constraints.
"""

import logging
import re

from kargo_core.exceptions import ValidationError
from kargo_core.manifest import (
    WAREHOUSE_KIND,
    ChartSubscription,
    GitSubscription,
    ImageSelectionStrategy,
    ImageSubscription,
    Warehouse,
)
from kargo_core.validation import FieldError, FieldPath, forbidden, invalid, required
from kargo_core.versions import Constraint

_LOGGER = logging.getLogger(__name__)

__all__ = ["WarehouseWebhook"]

GIT_URL_PATTERN = re.compile(
    r"^https?://(\w+([\.-]\w+)*@)?\w+([\.-]\w+)*(:[\d]+)?(/.*)?$", re.ASCII
)
BRANCH_PATTERN = re.compile(r"^\w+([-/]\w+)*$", re.ASCII)
IMAGE_REPO_PATTERN = re.compile(
    r"^(\w+([\.-]\w+)*(:[\d]+)?/)?(\w+([\.-]\w+)*)(/\w+([\.-]\w+)*)*$", re.ASCII
)
CHART_REPO_PATTERN = re.compile(
    r"^(((https?)|(oci))://)([\w\d\.\-]+)(:[\d]+)?(/.*)*$", re.ASCII
)
PLATFORM_PATTERN = re.compile(r"^[a-z0-9]+/[a-z0-9_]+(/[a-z0-9]+)?$")


def _validate_pattern(
    path: FieldPath, value: str, pattern: re.Pattern[str]
) -> list[FieldError]:
    if not pattern.match(value):
        return [invalid(path, value, f"should match '{pattern.pattern}'")]
    return []


def _validate_allow_tags(path: FieldPath, allow_tags: str | None) -> list[FieldError]:
    if not allow_tags:
        return []
    try:
        re.compile(allow_tags)
    except re.error as err:
        return [invalid(path, allow_tags, f"invalid regular expression: {err}")]
    return []


def _validate_constraint(path: FieldPath, constraint: str | None) -> list[FieldError]:
    if not constraint:
        return []
    try:
        Constraint.parse(constraint)
    except ValueError as err:
        return [invalid(path, constraint, str(err))]
    return []


def validate_git(path: FieldPath, sub: GitSubscription) -> list[FieldError]:
    """Validate a Git subscription."""
    errors = _validate_pattern(path.child("repoURL"), sub.repo_url, GIT_URL_PATTERN)
    if sub.branch:
        errors += _validate_pattern(path.child("branch"), sub.branch, BRANCH_PATTERN)
    errors += _validate_allow_tags(path.child("allowTags"), sub.allow_tags)
    errors += _validate_constraint(
        path.child("semverConstraint"), sub.semver_constraint
    )
    return errors


def validate_image(path: FieldPath, sub: ImageSubscription) -> list[FieldError]:
    """Validate an Image subscription."""
    errors = _validate_pattern(
        path.child("repoURL"), sub.repo_url, IMAGE_REPO_PATTERN
    )
    if sub.git_repo_url:
        errors += _validate_pattern(
            path.child("gitRepoURL"), sub.git_repo_url, GIT_URL_PATTERN
        )
    errors += _validate_allow_tags(path.child("allowTags"), sub.allow_tags)
    if sub.image_selection_strategy == ImageSelectionStrategy.DIGEST:
        # The constraint holds the tracked tag rather than a version range.
        if not sub.semver_constraint:
            errors.append(
                required(
                    path.child("semverConstraint"),
                    "the Digest strategy requires the tag to track",
                )
            )
    else:
        errors += _validate_constraint(
            path.child("semverConstraint"), sub.semver_constraint
        )
    if sub.platform:
        errors += _validate_pattern(
            path.child("platform"), sub.platform, PLATFORM_PATTERN
        )
    return errors


def validate_chart(path: FieldPath, sub: ChartSubscription) -> list[FieldError]:
    """Validate a Chart subscription."""
    errors = _validate_pattern(
        path.child("repoURL"), sub.repo_url, CHART_REPO_PATTERN
    )
    if sub.is_oci and sub.name:
        errors.append(
            forbidden(
                path.child("name"),
                "must be empty when repoURL points at a chart in an OCI registry",
            )
        )
    elif not sub.is_oci and not sub.name:
        errors.append(
            required(
                path.child("name"),
                "must be set when repoURL points at a chart repository",
            )
        )
    errors += _validate_constraint(
        path.child("semverConstraint"), sub.semver_constraint
    )
    return errors


def validate_warehouse(warehouse: Warehouse) -> list[FieldError]:
    """Return all field errors of a Warehouse spec."""
    path = FieldPath("spec").child("subscriptions")
    if not warehouse.subscriptions:
        return [required(path, "at least one subscription is required")]
    errors: list[FieldError] = []
    for i, entry in enumerate(warehouse.subscriptions):
        entry_path = path.at(i)
        if entry.git is not None:
            errors += validate_git(entry_path.child("git"), entry.git)
        if entry.image is not None:
            errors += validate_image(entry_path.child("image"), entry.image)
        if entry.chart is not None:
            errors += validate_chart(entry_path.child("chart"), entry.chart)
    return errors


class WarehouseWebhook:
    """Validates Warehouses on creation and update."""

    def validate(self, warehouse: Warehouse) -> None:
        """Validate a Warehouse.

        Raises:
            ValidationError: With every field error found.
        """
        if errors := validate_warehouse(warehouse):
            _LOGGER.debug("Rejecting Warehouse %s: %s", warehouse.name, errors)
            raise ValidationError(WAREHOUSE_KIND, warehouse.name, errors)

    async def validate_create(self, warehouse: Warehouse, dry_run: bool = False) -> None:
        """Admit a new Warehouse."""
        self.validate(warehouse)

    async def validate_update(self, old: Warehouse, new: Warehouse) -> None:
        """Admit an update to a Warehouse."""
        self.validate(new)

    async def validate_delete(self, warehouse: Warehouse) -> None:
        """Admit deleting a Warehouse, which is always allowed."""
