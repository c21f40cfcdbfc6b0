"""Representation of the resources managed by kargo-core.

Resources are parsed from raw kubernetes style documents with `parse_doc` and
serialized back with `to_dict` / `yaml`. A Warehouse holds a list of
subscriptions, each of which is exactly one of a Git, Image or Chart
subscription.
"""

from dataclasses import dataclass, field
import hashlib
import logging
import platform
from enum import StrEnum
from typing import Any, ClassVar, TypeVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField
import yaml

from .exceptions import InputException

__all__ = [
    "parse_raw_obj",
    "NamedResource",
    "CommitSelectionStrategy",
    "ImageSelectionStrategy",
    "GitSubscription",
    "ImageSubscription",
    "ChartSubscription",
    "RepoSubscription",
    "Subscription",
    "Warehouse",
    "WarehouseStatus",
    "Freight",
    "GitCommit",
    "Image",
    "Chart",
    "Stage",
    "Project",
    "PromotionPolicy",
    "Namespace",
    "RoleBinding",
    "Application",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
KARGO_DOMAIN = "kargo.akuity.io"
ARGOCD_DOMAIN = "argoproj.io"
RBAC_DOMAIN = "rbac.authorization.k8s.io"
CORE_VERSION = "v1"

KARGO_API_VERSION = f"{KARGO_DOMAIN}/v1alpha1"

WAREHOUSE_KIND = "Warehouse"
FREIGHT_KIND = "Freight"
STAGE_KIND = "Stage"
PROJECT_KIND = "Project"
NAMESPACE_KIND = "Namespace"
ROLE_BINDING_KIND = "RoleBinding"
APPLICATION_KIND = "Application"

PROJECT_LABEL_KEY = "kargo.akuity.io/project"
SHARD_LABEL_KEY = "kargo.akuity.io/shard"
REFRESH_ANNOTATION_KEY = "kargo.akuity.io/refresh"
LABEL_TRUE_VALUE = "true"
FINALIZER_NAME = "kargo.akuity.io/finalizer"

DEFAULT_ARGOCD_NAMESPACE = "argocd"

OCI_PREFIX = "oci://"

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
}


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


def _metadata(cls: type, doc: dict[str, Any]) -> dict[str, Any]:
    if not (metadata := doc.get("metadata")):
        raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
    if not metadata.get("name"):
        raise InputException(f"Invalid {cls.__name__} missing metadata.name: {doc}")
    return metadata


def _namespace(cls: type, doc: dict[str, Any], metadata: dict[str, Any]) -> str:
    if not (namespace := metadata.get("namespace")):
        raise InputException(f"Invalid {cls.__name__} missing metadata.namespace: {doc}")
    return namespace


def default_platform() -> str:
    """Return the os/arch platform string of the running process."""
    machine = platform.machine().lower()
    return f"{platform.system().lower()}/{_ARCH_ALIASES.get(machine, machine)}"


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    def compact_dict(self) -> dict[str, Any]:
        """Return a dictionary representation of the object without empty fields."""
        return {
            key: value
            for key, value in self.to_dict().items()
            if value not in ({}, [])
        }

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml.dump(self.compact_dict(), sort_keys=False)

    @property
    def resource_id(self) -> "NamedResource":
        """Identifier of this object in the store."""
        return NamedResource(
            getattr(self, "kind"), getattr(self, "namespace", None), getattr(self, "name")
        )

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


M = TypeVar("M", bound=BaseManifest)


def _from_dict(cls: type[M], doc: Any, where: str) -> M:
    """Parse a nested object, reporting malformed input as an InputException."""
    if not isinstance(doc, dict):
        raise InputException(
            f"Invalid {cls.__name__} in {where}, expected a mapping: {doc}"
        )
    try:
        return cls.from_dict(doc)
    except (MissingField, InvalidFieldValue) as err:
        raise InputException(f"Invalid {cls.__name__} in {where}: {err}") from err


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


class CommitSelectionStrategy(StrEnum):
    """Rules for identifying the newest commit of interest in a Git repository."""

    LEXICAL = "Lexical"
    NEWEST_FROM_BRANCH = "NewestFromBranch"
    NEWEST_TAG = "NewestTag"
    SEMVER = "SemVer"


class ImageSelectionStrategy(StrEnum):
    """Rules for identifying the newest version of an image."""

    DIGEST = "Digest"
    LEXICAL = "Lexical"
    NEWEST_BUILD = "NewestBuild"
    SEMVER = "SemVer"


def _parse_enum(cls: type, enum: type[StrEnum], key: str, doc: dict[str, Any], default: StrEnum) -> Any:
    if not (value := doc.get(key)):
        return default
    try:
        return enum(value)
    except ValueError as err:
        raise InputException(
            f"Invalid {cls.__name__} unsupported {key} '{value}': {doc}"
        ) from err


@dataclass
class GitSubscription(BaseManifest):
    """A subscription to a Git repository."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    """URL of the repository."""

    commit_selection_strategy: CommitSelectionStrategy = field(
        metadata=field_options(alias="commitSelectionStrategy"),
        default=CommitSelectionStrategy.NEWEST_FROM_BRANCH,
    )
    """How the newest commit of interest is identified."""

    branch: str | None = None
    """Branch to follow for NewestFromBranch, the default branch when unset."""

    semver_constraint: str | None = field(
        metadata=field_options(alias="semverConstraint"), default=None
    )
    """Constraint on tags considered by the SemVer strategy."""

    allow_tags: str | None = field(
        metadata=field_options(alias="allowTags"), default=None
    )
    """Regular expression that tags must match to be considered."""

    ignore_tags: list[str] = field(
        metadata=field_options(alias="ignoreTags"), default_factory=list
    )
    """Tags that are never considered."""

    insecure_skip_tls_verify: bool = field(
        metadata=field_options(alias="insecureSkipTLSVerify"), default=False
    )
    """Ignore certificate errors when connecting to the repository."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "GitSubscription":
        """Parse a GitSubscription from a subscription document."""
        if not (repo_url := doc.get("repoURL")):
            raise InputException(f"Invalid {cls.__name__} missing repoURL: {doc}")
        return cls(
            repo_url=repo_url,
            commit_selection_strategy=_parse_enum(
                cls,
                CommitSelectionStrategy,
                "commitSelectionStrategy",
                doc,
                CommitSelectionStrategy.NEWEST_FROM_BRANCH,
            ),
            branch=doc.get("branch") or None,
            semver_constraint=doc.get("semverConstraint") or None,
            allow_tags=doc.get("allowTags") or None,
            ignore_tags=list(doc.get("ignoreTags") or []),
            insecure_skip_tls_verify=bool(doc.get("insecureSkipTLSVerify", False)),
        )


@dataclass
class ImageSubscription(BaseManifest):
    """A subscription to a container image repository."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    """URL of the image repository, without a tag."""

    git_repo_url: str | None = field(
        metadata=field_options(alias="gitRepoURL"), default=None
    )
    """Git repository holding the source of the image, informational only."""

    image_selection_strategy: ImageSelectionStrategy = field(
        metadata=field_options(alias="imageSelectionStrategy"),
        default=ImageSelectionStrategy.SEMVER,
    )
    """How the newest image is identified."""

    semver_constraint: str | None = field(
        metadata=field_options(alias="semverConstraint"), default=None
    )
    """Constraint for SemVer, or the tracked tag for the Digest strategy."""

    allow_tags: str | None = field(
        metadata=field_options(alias="allowTags"), default=None
    )
    """Regular expression that tags must match to be considered."""

    ignore_tags: list[str] = field(
        metadata=field_options(alias="ignoreTags"), default_factory=list
    )
    """Tags that are never considered."""

    platform: str | None = None
    """The os/arch an image must support, defaults to the running platform."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ImageSubscription":
        """Parse an ImageSubscription from a subscription document."""
        if not (repo_url := doc.get("repoURL")):
            raise InputException(f"Invalid {cls.__name__} missing repoURL: {doc}")
        return cls(
            repo_url=repo_url,
            git_repo_url=doc.get("gitRepoURL") or None,
            image_selection_strategy=_parse_enum(
                cls,
                ImageSelectionStrategy,
                "imageSelectionStrategy",
                doc,
                ImageSelectionStrategy.SEMVER,
            ),
            semver_constraint=doc.get("semverConstraint") or None,
            allow_tags=doc.get("allowTags") or None,
            ignore_tags=list(doc.get("ignoreTags") or []),
            platform=doc.get("platform") or None,
        )

    @property
    def platform_or_default(self) -> str:
        """The platform to select images for."""
        return self.platform or default_platform()


@dataclass
class ChartSubscription(BaseManifest):
    """A subscription to a Helm chart repository."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    """URL of a classic chart repository or of one chart in an OCI registry."""

    name: str | None = None
    """Name of the chart in a classic chart repository."""

    semver_constraint: str | None = field(
        metadata=field_options(alias="semverConstraint"), default=None
    )
    """Constraint on chart versions."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartSubscription":
        """Parse a ChartSubscription from a subscription document."""
        if not (repo_url := doc.get("repoURL")):
            raise InputException(f"Invalid {cls.__name__} missing repoURL: {doc}")
        return cls(
            repo_url=repo_url,
            name=doc.get("name") or None,
            semver_constraint=doc.get("semverConstraint") or None,
        )

    @property
    def is_oci(self) -> bool:
        return self.repo_url.startswith(OCI_PREFIX)


Subscription = GitSubscription | ImageSubscription | ChartSubscription


@dataclass
class RepoSubscription(BaseManifest):
    """Exactly one of a Git, Image or Chart subscription."""

    git: GitSubscription | None = None
    image: ImageSubscription | None = None
    chart: ChartSubscription | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "RepoSubscription":
        """Parse a RepoSubscription from a Warehouse subscriptions entry."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid {cls.__name__}, expected a mapping: {doc}")
        present = [key for key in ("git", "image", "chart") if doc.get(key)]
        if len(present) != 1:
            raise InputException(
                f"Invalid {cls.__name__} must set exactly one of git, image, chart: {doc}"
            )
        if not isinstance(doc[present[0]], dict):
            raise InputException(
                f"Invalid {cls.__name__} {present[0]} must be a mapping: {doc}"
            )
        if git := doc.get("git"):
            return cls(git=GitSubscription.parse_doc(git))
        if image := doc.get("image"):
            return cls(image=ImageSubscription.parse_doc(image))
        return cls(chart=ChartSubscription.parse_doc(doc["chart"]))

    @property
    def subscription(self) -> Subscription:
        """The populated subscription."""
        if self.git is not None:
            return self.git
        if self.image is not None:
            return self.image
        if self.chart is not None:
            return self.chart
        raise InputException("RepoSubscription has no subscription set")


@dataclass
class WarehouseStatus(BaseManifest):
    """The most recently observed state of a Warehouse."""

    error: str | None = None
    """Error preventing the Warehouse from discovering new Freight."""

    observed_generation: int = field(
        metadata=field_options(alias="observedGeneration"), default=0
    )
    """The generation of the Warehouse spec last reconciled successfully."""


@dataclass
class Warehouse(BaseManifest):
    """A source of Freight."""

    kind: ClassVar[str] = WAREHOUSE_KIND

    name: str
    namespace: str
    subscriptions: list[RepoSubscription]
    generation: int = 1
    uid: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    status: WarehouseStatus = field(default_factory=WarehouseStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Warehouse":
        """Parse a Warehouse from a kubernetes resource object."""
        _check_version(doc, KARGO_DOMAIN)
        metadata = _metadata(cls, doc)
        namespace = _namespace(cls, doc, metadata)
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls.__name__} missing spec: {doc}")
        subscriptions = spec.get("subscriptions") or []
        if not isinstance(subscriptions, list):
            raise InputException(
                f"Invalid {cls.__name__} spec.subscriptions must be a list: {doc}"
            )
        status = doc.get("status") or {}
        return cls(
            name=metadata["name"],
            namespace=namespace,
            generation=metadata.get("generation", 1),
            uid=metadata.get("uid"),
            labels=dict(metadata.get("labels") or {}),
            subscriptions=[RepoSubscription.parse_doc(sub) for sub in subscriptions],
            status=WarehouseStatus(
                error=status.get("error") or None,
                observed_generation=status.get("observedGeneration", 0),
            ),
        )


@dataclass
class GitCommit(BaseManifest):
    """A specific commit from a Git repository."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    id: str
    branch: str | None = None
    tag: str | None = None
    message: str | None = None

    @property
    def artifact_id(self) -> str:
        return f"{self.repo_url}:{self.id}"


@dataclass
class Image(BaseManifest):
    """A specific version of a container image."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    tag: str
    digest: str | None = None
    git_repo_url: str | None = field(
        metadata=field_options(alias="gitRepoURL"), default=None
    )

    @property
    def artifact_id(self) -> str:
        if self.digest:
            return f"{self.repo_url}@{self.digest}"
        return f"{self.repo_url}:{self.tag}"


@dataclass
class Chart(BaseManifest):
    """A specific version of a Helm chart."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    version: str
    name: str | None = None

    @property
    def artifact_id(self) -> str:
        path = self.repo_url.rstrip("/")
        if self.name:
            path = f"{path}/{self.name}"
        return f"{path}:{self.version}"


@dataclass
class Freight(BaseManifest):
    """An immutable set of artifact versions, one per Warehouse subscription.

    The name of the Freight is a fingerprint of its contents, so two passes that
    discover the same set of artifacts produce the same object.
    """

    kind: ClassVar[str] = FREIGHT_KIND

    name: str
    namespace: str
    warehouse: str
    commits: list[GitCommit] = field(default_factory=list)
    images: list[Image] = field(default_factory=list)
    charts: list[Chart] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        warehouse: Warehouse,
        commits: list[GitCommit],
        images: list[Image],
        charts: list[Chart],
    ) -> "Freight":
        """Build Freight for a Warehouse, named by its content fingerprint."""
        return cls(
            name=generate_freight_id(commits, images, charts),
            namespace=warehouse.namespace,
            warehouse=warehouse.name,
            commits=commits,
            images=images,
            charts=charts,
        )


def generate_freight_id(
    commits: list[GitCommit], images: list[Image], charts: list[Chart]
) -> str:
    """Return the content fingerprint of a set of artifacts."""
    artifacts = sorted(
        [c.artifact_id for c in commits]
        + [i.artifact_id for i in images]
        + [c.artifact_id for c in charts]
    )
    return hashlib.sha1("|".join(artifacts).encode("utf-8")).hexdigest()


@dataclass
class ArgoCDAppUpdate(BaseManifest):
    """A reference to an Argo CD Application updated by a Stage."""

    app_name: str = field(metadata=field_options(alias="appName"))
    app_namespace: str | None = field(
        metadata=field_options(alias="appNamespace"), default=None
    )

    def app_namespace_or_default(self, default: str = DEFAULT_ARGOCD_NAMESPACE) -> str:
        return self.app_namespace or default


@dataclass
class PromotionMechanisms(BaseManifest):
    """How Freight is promoted into a Stage."""

    argocd_app_updates: list[ArgoCDAppUpdate] = field(
        metadata=field_options(alias="argoCDAppUpdates"), default_factory=list
    )


@dataclass
class Stage(BaseManifest):
    """A promotion target."""

    kind: ClassVar[str] = STAGE_KIND

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    promotion_mechanisms: PromotionMechanisms | None = field(
        metadata=field_options(alias="promotionMechanisms"), default=None
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Stage":
        """Parse a Stage from a kubernetes resource object."""
        _check_version(doc, KARGO_DOMAIN)
        metadata = _metadata(cls, doc)
        namespace = _namespace(cls, doc, metadata)
        spec = doc.get("spec") or {}
        mechanisms: PromotionMechanisms | None = None
        if mechanisms_doc := spec.get("promotionMechanisms"):
            mechanisms = PromotionMechanisms(
                argocd_app_updates=[
                    _from_dict(
                        ArgoCDAppUpdate,
                        update,
                        "spec.promotionMechanisms.argoCDAppUpdates",
                    )
                    for update in mechanisms_doc.get("argoCDAppUpdates") or []
                ]
            )
        return cls(
            name=metadata["name"],
            namespace=namespace,
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            promotion_mechanisms=mechanisms,
        )


@dataclass
class PromotionPolicy(BaseManifest):
    """Promotion policy of one Stage within a Project."""

    stage: str
    auto_promotion_enabled: bool = field(
        metadata=field_options(alias="autoPromotionEnabled"), default=False
    )


@dataclass
class Project(BaseManifest):
    """A tenant of the system; its name is also the name of its namespace."""

    kind: ClassVar[str] = PROJECT_KIND

    name: str
    namespace: str | None = None
    uid: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    promotion_policies: list[PromotionPolicy] = field(
        metadata=field_options(alias="promotionPolicies"), default_factory=list
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Project":
        """Parse a Project from a kubernetes resource object."""
        _check_version(doc, KARGO_DOMAIN)
        metadata = _metadata(cls, doc)
        spec = doc.get("spec") or {}
        return cls(
            name=metadata["name"],
            uid=metadata.get("uid"),
            labels=dict(metadata.get("labels") or {}),
            promotion_policies=[
                _from_dict(PromotionPolicy, policy, "spec.promotionPolicies")
                for policy in spec.get("promotionPolicies") or []
            ],
        )


@dataclass
class OwnerReference(BaseManifest):
    """A reference from an object to the object that owns it."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    name: str
    uid: str


@dataclass
class Namespace(BaseManifest):
    """A kubernetes Namespace."""

    kind: ClassVar[str] = NAMESPACE_KIND

    name: str
    namespace: str | None = None
    uid: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(
        metadata=field_options(alias="ownerReferences"), default_factory=list
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Namespace":
        """Parse a Namespace from a kubernetes resource object."""
        _check_version(doc, CORE_VERSION)
        metadata = _metadata(cls, doc)
        return cls(
            name=metadata["name"],
            uid=metadata.get("uid"),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            finalizers=list(metadata.get("finalizers") or []),
            owner_references=[
                _from_dict(OwnerReference, ref, "metadata.ownerReferences")
                for ref in metadata.get("ownerReferences") or []
            ],
        )


@dataclass
class RoleRef(BaseManifest):
    """The role granted by a RoleBinding."""

    api_group: str = field(metadata=field_options(alias="apiGroup"))
    kind: str
    name: str


@dataclass
class Subject(BaseManifest):
    """An identity a RoleBinding grants a role to."""

    kind: str
    name: str
    namespace: str | None = None


@dataclass
class RoleBinding(BaseManifest):
    """A kubernetes RoleBinding."""

    kind: ClassVar[str] = ROLE_BINDING_KIND

    name: str
    namespace: str
    role_ref: RoleRef = field(metadata=field_options(alias="roleRef"))
    subjects: list[Subject] = field(default_factory=list)


@dataclass
class Application(BaseManifest):
    """An Argo CD Application, observed only for its identity."""

    kind: ClassVar[str] = APPLICATION_KIND

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Application":
        """Parse an Application from a kubernetes resource object."""
        _check_version(doc, ARGOCD_DOMAIN)
        metadata = _metadata(cls, doc)
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace") or DEFAULT_ARGOCD_NAMESPACE,
            labels=dict(metadata.get("labels") or {}),
        )


_PARSERS = {
    WAREHOUSE_KIND: Warehouse.parse_doc,
    STAGE_KIND: Stage.parse_doc,
    PROJECT_KIND: Project.parse_doc,
    NAMESPACE_KIND: Namespace.parse_doc,
    APPLICATION_KIND: Application.parse_doc,
}


SUPPORTED_KINDS = frozenset(_PARSERS)


def parse_raw_obj(obj: dict[str, Any]) -> BaseManifest:
    """Parse a raw kubernetes object into one of the supported resources."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if (parser := _PARSERS.get(kind)) is None:
        raise InputException(f"Unsupported object kind {kind}")
    return parser(obj)
