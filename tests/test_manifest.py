"""Tests for manifest library."""

from pathlib import Path
from typing import Any

import pytest
import yaml

from kargo_core.exceptions import InputException
from kargo_core.manifest import (
    Application,
    Chart,
    ChartSubscription,
    CommitSelectionStrategy,
    Freight,
    GitCommit,
    GitSubscription,
    Image,
    ImageSelectionStrategy,
    ImageSubscription,
    NamedResource,
    Namespace,
    Project,
    RepoSubscription,
    Stage,
    Warehouse,
    default_platform,
    generate_freight_id,
    parse_raw_obj,
)

TESTDATA_DIR = Path("tests/testdata/team1")


def load_docs(name: str) -> list[dict[str, Any]]:
    return list(yaml.safe_load_all((TESTDATA_DIR / name).read_text()))


def test_parse_warehouse() -> None:
    """Test parsing a Warehouse with one subscription of each kind."""
    (doc,) = load_docs("10-warehouse.yaml")
    warehouse = Warehouse.parse_doc(doc)
    assert warehouse.name == "app"
    assert warehouse.namespace == "team1"
    assert warehouse.generation == 1
    assert warehouse.resource_id == NamedResource("Warehouse", "team1", "app")

    git, image, chart = [entry.subscription for entry in warehouse.subscriptions]
    assert git == GitSubscription(
        repo_url="https://github.com/example/app-config",
        commit_selection_strategy=CommitSelectionStrategy.NEWEST_FROM_BRANCH,
        branch="main",
    )
    assert image == ImageSubscription(
        repo_url="ghcr.io/example/app",
        image_selection_strategy=ImageSelectionStrategy.SEMVER,
        semver_constraint="^1.0.0",
        platform="linux/amd64",
    )
    assert chart == ChartSubscription(
        repo_url="oci://ghcr.io/example/charts/app", semver_constraint=">=0.1.0"
    )
    assert chart.is_oci


def test_warehouse_compact_dict() -> None:
    """Test serializing a Warehouse uses the document field names."""
    (doc,) = load_docs("10-warehouse.yaml")
    warehouse = Warehouse.parse_doc(doc)
    data = warehouse.compact_dict()
    assert data["subscriptions"][0] == {
        "git": {
            "repoURL": "https://github.com/example/app-config",
            "commitSelectionStrategy": "NewestFromBranch",
            "branch": "main",
            "ignoreTags": [],
            "insecureSkipTLSVerify": False,
        }
    }
    assert data["status"] == {"observedGeneration": 0}
    assert "labels" not in data


def test_parse_warehouse_status() -> None:
    """Test the status and generation of a Warehouse are parsed."""
    (doc,) = load_docs("10-warehouse.yaml")
    doc["metadata"]["generation"] = 3
    doc["status"] = {"error": "boom", "observedGeneration": 2}
    warehouse = Warehouse.parse_doc(doc)
    assert warehouse.generation == 3
    assert warehouse.status.error == "boom"
    assert warehouse.status.observed_generation == 2


@pytest.mark.parametrize(
    ("entry", "match"),
    [
        ("git", "expected a mapping"),
        ({"git": "https://github.com/example/repo"}, "git must be a mapping"),
        ({}, "exactly one of"),
        (
            {
                "git": {"repoURL": "https://github.com/example/repo"},
                "image": {"repoURL": "ghcr.io/example/app"},
            },
            "exactly one of",
        ),
        ({"git": {"branch": "main"}}, "missing repoURL"),
        (
            {
                "image": {
                    "repoURL": "ghcr.io/example/app",
                    "imageSelectionStrategy": "Oldest",
                }
            },
            "unsupported imageSelectionStrategy",
        ),
    ],
)
def test_invalid_subscription(entry: Any, match: str) -> None:
    """Test malformed subscription entries."""
    with pytest.raises(InputException, match=match):
        RepoSubscription.parse_doc(entry)


def test_parse_warehouse_invalid() -> None:
    """Test Warehouses missing required fields."""
    (doc,) = load_docs("10-warehouse.yaml")
    with pytest.raises(InputException, match="missing metadata.namespace"):
        Warehouse.parse_doc({**doc, "metadata": {"name": "app"}})
    with pytest.raises(InputException, match="missing spec"):
        Warehouse.parse_doc({**doc, "spec": None})
    with pytest.raises(InputException, match="expected 'kargo.akuity.io'"):
        Warehouse.parse_doc({**doc, "apiVersion": "v1"})


def test_parse_stages() -> None:
    """Test parsing Stages and their Argo CD Application references."""
    test_doc, prod_doc, _ = load_docs("20-stages.yaml")
    test = Stage.parse_doc(test_doc)
    assert test.promotion_mechanisms is not None
    (update,) = test.promotion_mechanisms.argocd_app_updates
    assert update.app_name == "app-test"
    assert update.app_namespace == "argocd"

    prod = Stage.parse_doc(prod_doc)
    assert prod.promotion_mechanisms is not None
    (update,) = prod.promotion_mechanisms.argocd_app_updates
    assert update.app_namespace is None
    assert update.app_namespace_or_default("custom") == "custom"
    assert update.app_namespace_or_default() == "argocd"


def test_parse_stage_invalid_app_update() -> None:
    """Test a Stage with a malformed Argo CD Application reference."""
    test_doc, _, _ = load_docs("20-stages.yaml")
    updates = [{"appNamespace": "argocd"}]
    test_doc["spec"]["promotionMechanisms"]["argoCDAppUpdates"] = updates
    with pytest.raises(InputException, match="Invalid ArgoCDAppUpdate"):
        Stage.parse_doc(test_doc)

    test_doc["spec"]["promotionMechanisms"]["argoCDAppUpdates"] = ["app-test"]
    with pytest.raises(InputException, match="expected a mapping"):
        Stage.parse_doc(test_doc)


def test_parse_project() -> None:
    """Test parsing a Project, which is not namespaced."""
    (doc,) = load_docs("00-project.yaml")
    project = Project.parse_doc(doc)
    assert project.name == "team1"
    assert project.namespace is None
    assert [p.stage for p in project.promotion_policies] == ["test", "prod"]
    assert project.promotion_policies[0].auto_promotion_enabled
    assert not project.promotion_policies[1].auto_promotion_enabled
    assert project.resource_id == NamedResource("Project", None, "team1")
    assert str(project.resource_id) == "Project/team1"


def test_parse_project_invalid_policy() -> None:
    """Test a Project with a promotion policy that does not name a Stage."""
    (doc,) = load_docs("00-project.yaml")
    doc["spec"]["promotionPolicies"] = [{"autoPromotionEnabled": True}]
    with pytest.raises(InputException, match="Invalid PromotionPolicy"):
        Project.parse_doc(doc)


def test_parse_namespace() -> None:
    """Test parsing a Namespace with owner references."""
    namespace = Namespace.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {
                "name": "team1",
                "labels": {"kargo.akuity.io/project": "true"},
                "finalizers": ["kargo.akuity.io/finalizer"],
                "ownerReferences": [
                    {
                        "apiVersion": "kargo.akuity.io/v1alpha1",
                        "kind": "Project",
                        "name": "team1",
                        "uid": "1234",
                    }
                ],
            },
        }
    )
    assert namespace.labels == {"kargo.akuity.io/project": "true"}
    assert namespace.finalizers == ["kargo.akuity.io/finalizer"]
    assert namespace.owner_references[0].uid == "1234"


def test_parse_raw_obj() -> None:
    """Test dispatching raw objects to the matching resource type."""
    resources = [
        parse_raw_obj(doc)
        for name in ("00-project.yaml", "10-warehouse.yaml", "30-applications.yaml")
        for doc in load_docs(name)
    ]
    assert [type(r) for r in resources] == [Project, Warehouse, Application, Application]
    assert resources[2].resource_id == NamedResource("Application", "argocd", "app-test")


def test_parse_raw_obj_unsupported() -> None:
    """Test unsupported kinds are rejected."""
    *_, config_map = load_docs("20-stages.yaml")
    with pytest.raises(InputException, match="Unsupported object kind ConfigMap"):
        parse_raw_obj(config_map)
    with pytest.raises(InputException, match="missing kind"):
        parse_raw_obj({"apiVersion": "v1"})


def test_artifact_ids() -> None:
    """Test the identities used to fingerprint Freight."""
    assert GitCommit(repo_url="https://g/r", id="abc").artifact_id == "https://g/r:abc"
    assert Image(repo_url="r/app", tag="1.0").artifact_id == "r/app:1.0"
    assert (
        Image(repo_url="r/app", tag="1.0", digest="sha256:d").artifact_id
        == "r/app@sha256:d"
    )
    assert (
        Chart(repo_url="https://charts/", name="app", version="1.0").artifact_id
        == "https://charts/app:1.0"
    )
    assert Chart(repo_url="oci://r/app", version="1.0").artifact_id == "oci://r/app:1.0"


def test_freight_id_is_content_addressed() -> None:
    """Test the Freight name depends only on the set of artifacts."""
    commit = GitCommit(repo_url="https://g/r", id="abc", message="first")
    image = Image(repo_url="r/app", tag="1.0", digest="sha256:d")
    chart = Chart(repo_url="oci://r/app", version="1.0")
    freight_id = generate_freight_id([commit], [image], [chart])
    assert len(freight_id) == 40
    assert freight_id == generate_freight_id(
        [GitCommit(repo_url="https://g/r", id="abc", message="other")], [image], [chart]
    )
    assert freight_id != generate_freight_id(
        [GitCommit(repo_url="https://g/r", id="abd")], [image], [chart]
    )


def test_freight_build() -> None:
    """Test building Freight for a Warehouse."""
    (doc,) = load_docs("10-warehouse.yaml")
    warehouse = Warehouse.parse_doc(doc)
    image = Image(repo_url="ghcr.io/example/app", tag="1.0.0", digest="sha256:d")
    freight = Freight.build(warehouse, [], [image], [])
    assert freight.namespace == "team1"
    assert freight.warehouse == "app"
    assert freight.name == generate_freight_id([], [image], [])
    assert freight.resource_id == NamedResource("Freight", "team1", freight.name)
    assert yaml.safe_load(freight.yaml()) == {
        "name": freight.name,
        "namespace": "team1",
        "warehouse": "app",
        "images": [
            {"repoURL": "ghcr.io/example/app", "tag": "1.0.0", "digest": "sha256:d"}
        ],
    }


def test_default_platform() -> None:
    """Test the default platform has an os/arch form."""
    os_name, arch = default_platform().split("/")
    assert os_name
    assert arch
