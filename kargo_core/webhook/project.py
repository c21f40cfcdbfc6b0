"""Admission webhook for Projects.

Creating a Project synchronously provisions the namespace of the same name,
since the resources that follow a Project in a manifest are usually scoped to
that namespace. The namespace is only labeled as belonging to a project here;
the owner reference is added later by the project controller so that the
namespace is never mistaken for an orphan while the Project is being admitted.
"""

import logging

from kargo_core.config import WebhookConfig
from kargo_core.exceptions import ConflictError, InternalError, ValidationError
from kargo_core.manifest import (
    FINALIZER_NAME,
    KARGO_DOMAIN,
    LABEL_TRUE_VALUE,
    NAMESPACE_KIND,
    PROJECT_KIND,
    PROJECT_LABEL_KEY,
    RBAC_DOMAIN,
    NamedResource,
    Namespace,
    Project,
    RoleBinding,
    RoleRef,
    Subject,
)
from kargo_core.store import CreateResult, Store
from kargo_core.validation import FieldError, FieldPath, invalid

_LOGGER = logging.getLogger(__name__)

__all__ = ["ProjectWebhook"]

PROJECT_RESOURCE = f"projects.{KARGO_DOMAIN}"
SECRETS_ROLE_BINDING_NAME = "kargo-api-server-manage-project-secrets"
SECRET_MANAGER_CLUSTER_ROLE = "kargo-secret-manager"
API_SERVER_SERVICE_ACCOUNT = "kargo-api"


def validate_promotion_policies(project: Project, path: FieldPath) -> list[FieldError]:
    """Return an error for the first Stage referenced by more than one policy."""
    stages: set[str] = set()
    for policy in project.promotion_policies:
        if policy.stage in stages:
            return [
                invalid(
                    path,
                    policy.stage,
                    f"multiple {path} reference stage {policy.stage}",
                )
            ]
        stages.add(policy.stage)
    return []


class ProjectWebhook:
    """Validates Projects and provisions their namespace on creation."""

    def __init__(self, store: Store, config: WebhookConfig) -> None:
        """Initialize the ProjectWebhook."""
        self._store = store
        self._config = config

    def validate_spec(self, project: Project) -> None:
        """Validate the spec of a Project.

        Raises:
            ValidationError: If the spec is invalid.
        """
        path = FieldPath("spec").child("promotionPolicies")
        if errors := validate_promotion_policies(project, path):
            raise ValidationError(PROJECT_KIND, project.name, errors)

    async def validate_create(self, project: Project, dry_run: bool = False) -> None:
        """Admit a new Project, creating its namespace and secret permissions.

        Nothing is created for a dry run. If granting the secret permissions
        fails after the namespace was created, the error is raised and the
        caller is expected to retry; both steps are idempotent.
        """
        self.validate_spec(project)
        if dry_run:
            return
        await self.ensure_namespace(project)
        await self.ensure_secret_permissions(project)

    async def validate_update(self, old: Project, new: Project) -> None:
        """Admit an update to a Project."""
        self.validate_spec(new)

    async def validate_delete(self, project: Project) -> None:
        """Admit deleting a Project, which is always allowed."""

    async def ensure_namespace(self, project: Project) -> None:
        """Ensure the namespace of the Project exists and is not owned by another.

        Raises:
            ConflictError: If the namespace exists and belongs to something else.
            InternalError: If the store could not be read or written.
        """
        namespace = await self._get_namespace(project)
        if namespace is None:
            namespace = Namespace(
                name=project.name,
                labels={PROJECT_LABEL_KEY: LABEL_TRUE_VALUE},
                finalizers=[FINALIZER_NAME],
            )
            try:
                result = await self._store.create_if_absent(namespace)
            except Exception as err:
                raise InternalError(
                    f'error creating namespace "{project.name}": {err}'
                ) from err
            if result == CreateResult.CREATED:
                _LOGGER.debug("Created namespace %s for Project", project.name)
                return
            # Created concurrently, possibly by someone else.
            if (namespace := await self._get_namespace(project)) is None:
                raise InternalError(
                    f'namespace "{project.name}" was deleted while being created'
                )
        self._check_ownership(project, namespace)
        _LOGGER.debug("Namespace %s exists but no conflict was found", project.name)

    async def _get_namespace(self, project: Project) -> Namespace | None:
        try:
            return await self._store.get_object(
                NamedResource(NAMESPACE_KIND, None, project.name), Namespace
            )
        except Exception as err:
            raise InternalError(
                f'error getting namespace "{project.name}": {err}'
            ) from err

    def _check_ownership(self, project: Project, namespace: Namespace) -> None:
        owners = namespace.owner_references
        if (
            (not owners and namespace.labels.get(PROJECT_LABEL_KEY) != LABEL_TRUE_VALUE)
            or (len(owners) == 1 and owners[0].uid != project.uid)
            or len(owners) > 1
        ):
            raise ConflictError(
                PROJECT_RESOURCE,
                project.name,
                f'failed to initialize Project "{project.name}" because namespace '
                f'"{project.name}" already exists',
            )

    async def ensure_secret_permissions(self, project: Project) -> None:
        """Allow the API server to manage Secrets in the Project namespace.

        Raises:
            InternalError: If the RoleBinding could not be created.
        """
        role_binding = RoleBinding(
            name=SECRETS_ROLE_BINDING_NAME,
            namespace=project.name,
            role_ref=RoleRef(
                api_group=RBAC_DOMAIN,
                kind="ClusterRole",
                name=SECRET_MANAGER_CLUSTER_ROLE,
            ),
            subjects=[
                Subject(
                    kind="ServiceAccount",
                    name=API_SERVER_SERVICE_ACCOUNT,
                    namespace=self._config.kargo_namespace,
                )
            ],
        )
        try:
            result = await self._store.create_if_absent(role_binding)
        except Exception as err:
            raise InternalError(
                f'error creating role binding "{role_binding.name}" in project '
                f'namespace "{project.name}": {err}'
            ) from err
        if result == CreateResult.ALREADY_EXISTS:
            _LOGGER.debug("Role binding already exists in namespace %s", project.name)
            return
        _LOGGER.debug(
            "Granted API server access to manage secrets in namespace %s", project.name
        )
