"""Tests for CatalogService."""

from __future__ import annotations

import pytest

from ark.errors import Conflict, InvalidArgument, NotFound
from ark.models.instance import Environment, Instance, InstanceStatus
from ark.services.catalog_service import CatalogService, normalize_deploy_jobs


def _create(db_session, product_id="api", **overrides):
    fields = {
        "name": "API",
        "description": "Public API",
        "deploy_jobs": {"PROD": "deploy-api-prod"},
        "delete_job": "delete-api",
    }
    fields.update(overrides)
    product = CatalogService(db_session).create_product(product_id, **fields)
    db_session.commit()
    return product


def _add_instance(db_session, product_id: str, status: InstanceStatus) -> Instance:
    instance = Instance(
        product_id=product_id,
        target_host="node1",
        environment=Environment.PROD,
        status=status,
        job_name="deploy-api-prod",
        build_id="deploy-api-prod#1",
    )
    db_session.add(instance)
    db_session.commit()
    return instance


class TestNormalizeDeployJobs:
    def test_keys_are_canonicalised(self):
        jobs = normalize_deploy_jobs({"prod": "a", "Development": "b", "testing": "c"})
        assert jobs == {"PROD": "a", "DEV": "b", "TEST": "c"}

    def test_blank_entries_are_dropped(self):
        assert normalize_deploy_jobs({"PROD": "deploy", "DEV": "", "TEST": None}) == {"PROD": "deploy"}

    def test_unknown_environment_rejected(self):
        with pytest.raises(InvalidArgument):
            normalize_deploy_jobs({"staging": "deploy-staging"})

    @pytest.mark.parametrize("job", ["../etc", "a b", "job#1", "job@x", "back\\slash", "with/slash"])
    def test_unsafe_job_names_rejected(self, job):
        with pytest.raises(InvalidArgument):
            normalize_deploy_jobs({"PROD": job})


class TestCreateProduct:
    def test_round_trip_keeps_only_set_environments(self, db_session):
        _create(db_session, deploy_jobs={"PROD": "deploy-api-prod", "DEV": "  "})
        product = CatalogService(db_session).get_product("api")
        assert product.name == "API"
        assert product.description == "Public API"
        assert product.deploy_jobs == {"PROD": "deploy-api-prod"}
        assert product.delete_job == "delete-api"
        assert product.web_service is None
        assert product.web_port == 80

    def test_duplicate_id_conflicts(self, db_session):
        _create(db_session)
        with pytest.raises(Conflict):
            _create(db_session)

    @pytest.mark.parametrize("bad_id", ["", "API", "my_api", "-api", "a" * 65])
    def test_malformed_id_rejected(self, db_session, bad_id):
        with pytest.raises(InvalidArgument):
            _create(db_session, product_id=bad_id)

    def test_missing_name_rejected(self, db_session):
        with pytest.raises(InvalidArgument):
            _create(db_session, name="   ")

    def test_delete_job_may_be_empty(self, db_session):
        product = _create(db_session, delete_job="")
        assert product.delete_job == ""

    def test_web_service_validated(self, db_session):
        with pytest.raises(InvalidArgument):
            _create(db_session, web_service="Web Service")

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_web_port_range(self, db_session, port):
        with pytest.raises(InvalidArgument):
            _create(db_session, web_service="web", web_port=port)


class TestUpdateProduct:
    def test_partial_update(self, db_session):
        _create(db_session)
        svc = CatalogService(db_session)
        product = svc.update_product("api", {"description": "New", "deploy_jobs": {"dev": "deploy-api-dev"}})
        db_session.commit()
        assert product.description == "New"
        assert product.name == "API"
        assert product.deploy_jobs == {"DEV": "deploy-api-dev"}

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            CatalogService(db_session).update_product("missing", {"name": "x"})

    def test_id_cannot_change(self, db_session):
        _create(db_session)
        with pytest.raises(InvalidArgument):
            CatalogService(db_session).update_product("api", {"id": "other"})

    def test_same_id_in_patch_is_accepted(self, db_session):
        _create(db_session)
        product = CatalogService(db_session).update_product("api", {"id": "api", "name": "Renamed"})
        assert product.name == "Renamed"


class TestDeleteProduct:
    def test_delete(self, db_session):
        _create(db_session)
        svc = CatalogService(db_session)
        svc.delete_product("api")
        db_session.commit()
        with pytest.raises(NotFound):
            svc.get_product("api")

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            CatalogService(db_session).delete_product("missing")

    def test_rejected_while_live_instances_exist(self, db_session):
        _create(db_session)
        _add_instance(db_session, "api", InstanceStatus.running)
        with pytest.raises(Conflict):
            CatalogService(db_session).delete_product("api")

    def test_stopped_instances_do_not_block(self, db_session):
        _create(db_session)
        _add_instance(db_session, "api", InstanceStatus.stopped)
        CatalogService(db_session).delete_product("api")
        db_session.commit()
        assert db_session.query(Instance).count() == 0

    def test_list_ordered_by_id(self, db_session):
        _create(db_session, product_id="zeta")
        _create(db_session, product_id="alpha")
        ids = [p.id for p in CatalogService(db_session).list_products()]
        assert ids == ["alpha", "zeta"]
