"""Tests for ReportManager CRUD, interpolation and execution."""

import threading

import pytest

from analytics_engine.exceptions import (
    ConflictError,
    ExecutionError,
    MissingParameterError,
    NotFoundError,
    ValidationError,
)
from analytics_engine.models.report import Report
from analytics_engine.modules.reporting import interpolate


# ===========================================================================
# 1. Interpolation
# ===========================================================================
class TestInterpolate:

    def test_exact_token_preserves_type(self):
        assert interpolate("$param.limit", {"limit": 5}) == 5
        assert interpolate({"$in": "$param.ids"}, {"ids": [1, 2]}) == {"$in": [1, 2]}

    def test_embedded_token_is_textual(self):
        assert interpolate("Dept: $param.dept!", {"dept": "Sales"}) == "Dept: Sales!"

    def test_longest_name_wins(self):
        params = {"status": "A", "status_code": "B"}
        assert interpolate("$param.status_code/$param.status", params) == "B/A"

    def test_unknown_tokens_are_left(self):
        assert interpolate("$param.other", {"x": 1}) == "$param.other"

    def test_nested_structures(self):
        value = [{"type": "match", "body": {"salary": {"$gte": "$param.min"}}}]
        assert interpolate(value, {"min": 100000}) == [
            {"type": "match", "body": {"salary": {"$gte": 100000}}}
        ]

    def test_non_string_scalars_untouched(self):
        assert interpolate(3, {"x": 1}) == 3
        assert interpolate(None, {}) is None


# ===========================================================================
# 2. CRUD
# ===========================================================================
class TestReportCrud:

    def test_create_and_get(self, report_manager, salary_report_def):
        report = report_manager.create(salary_report_def)
        assert isinstance(report, Report)
        assert report_manager.get("salary-by-dept") is report
        assert report.created_at
        assert len(report_manager) == 1

    def test_duplicate_id_is_conflict(self, report_manager, salary_report_def):
        report_manager.create(salary_report_def)
        with pytest.raises(ConflictError, match="already exists"):
            report_manager.create(salary_report_def)

    def test_get_missing_returns_none(self, report_manager):
        assert report_manager.get("nope") is None

    def test_require_missing(self, report_manager):
        with pytest.raises(NotFoundError) as exc_info:
            report_manager.require("nope")
        assert exc_info.value.kind == "Report"
        assert exc_info.value.entity_id == "nope"
        assert str(exc_info.value) == 'Report "nope" not found'

    def test_update_merges_and_keeps_identity(self, report_manager, salary_report_def):
        original = report_manager.create(salary_report_def)
        updated = report_manager.update("salary-by-dept", {
            "name": "Renamed",
            "format": "json",
            "id": "hijack",
            "createdAt": "1999-01-01T00:00:00+00:00",
        })
        assert updated.name == "Renamed"
        assert updated.format == "json"
        assert updated.id == "salary-by-dept"
        assert updated.created_at == original.created_at
        assert updated.stages == original.stages
        assert report_manager.get("hijack") is None

    def test_update_accepts_snake_case(self, report_manager, salary_report_def):
        report_manager.create(salary_report_def)
        updated = report_manager.update("salary-by-dept", {"object_name": "contractor"})
        assert updated.object_name == "contractor"

    def test_update_is_validated(self, report_manager, salary_report_def):
        report_manager.create(salary_report_def)
        with pytest.raises(ValidationError):
            report_manager.update("salary-by-dept", {"stages": []})
        assert report_manager.get("salary-by-dept").stages

    def test_update_missing(self, report_manager):
        with pytest.raises(NotFoundError):
            report_manager.update("nope", {"name": "x"})

    def test_delete(self, report_manager, salary_report_def):
        report_manager.create(salary_report_def)
        assert report_manager.delete("salary-by-dept") is True
        assert report_manager.delete("salary-by-dept") is False
        assert len(report_manager) == 0

    def test_list_filters_are_anded(self, report_manager, salary_report_def):
        report_manager.create(salary_report_def)
        report_manager.create({**salary_report_def, "id": "r2", "createdBy": "bob"})
        report_manager.create({**salary_report_def, "id": "r3", "objectName": "contractor",
                               "format": "chart"})
        assert len(report_manager.list()) == 3
        assert [r.id for r in report_manager.list(object_name="employee")] == [
            "salary-by-dept", "r2",
        ]
        assert [r.id for r in report_manager.list(object_name="employee", created_by="bob")] == ["r2"]
        assert report_manager.list(object_name="contractor", created_by="bob") == []
        assert [r.id for r in report_manager.list(format="chart")] == ["r3"]

    @pytest.mark.parametrize("override,message", [
        ({"id": ""}, "id"),
        ({"name": ""}, "name"),
        ({"objectName": ""}, "objectName"),
        ({"createdBy": None}, "createdBy"),
        ({"format": "pdf"}, "format"),
        ({"stages": []}, "at least one pipeline stage"),
        ({"stages": [{"type": "explode", "body": {}}]}, "Invalid stage type"),
        ({"parameters": [{"name": "a"}, {"name": "a"}]}, "Duplicate"),
        ({"parameters": [{"type": "string"}]}, "must have a name"),
        ({"parameters": [{"name": "a", "type": "blob"}]}, "unknown type"),
    ])
    def test_create_validation(self, report_manager, salary_report_def, override, message):
        with pytest.raises(ValidationError, match=message):
            report_manager.create({**salary_report_def, **override})
        assert len(report_manager) == 0

    def test_stage_ceiling_applies_to_reports(self, report_manager, salary_report_def):
        stages = [{"type": "skip", "body": {"n": 0}}] * 21
        with pytest.raises(ValidationError, match="maximum of 20"):
            report_manager.create({**salary_report_def, "stages": stages})

    def test_round_trip_dict(self, report_manager, salary_report_def):
        report = report_manager.create(salary_report_def)
        clone = Report.from_dict(report.to_dict())
        assert clone == report


# ===========================================================================
# 3. Execution
# ===========================================================================
class TestReportExecute:

    @pytest.mark.asyncio
    async def test_execute_with_params(self, report_manager, salary_report_def, data_source):
        report_manager.create(salary_report_def)
        result = await report_manager.execute("salary-by-dept", {"status": "active"}, data_source)
        assert result.report_id == "salary-by-dept"
        assert result.report_name == "Salary by department"
        assert result.executed_at
        assert result.parameters == {"status": "active"}
        assert result.data == [
            {"_id": "Engineering", "totalSalary": 215000},
            {"_id": "Marketing", "totalSalary": 90000},
            {"_id": "Sales", "totalSalary": 85000},
        ]

    @pytest.mark.asyncio
    async def test_matches_hand_built_pipeline(
        self, engine, report_manager, salary_report_def, data_source
    ):
        report_manager.create(salary_report_def)
        via_report = await report_manager.execute(
            "salary-by-dept", {"status": "active"}, data_source
        )
        stages = [dict(s) for s in salary_report_def["stages"]]
        stages[0] = {"type": "match", "body": {"status": "active"}}
        direct = await engine.execute({"objectName": "employee", "stages": stages}, data_source)
        assert via_report.data == direct.data

    @pytest.mark.asyncio
    async def test_default_value_used(self, report_manager, salary_report_def, data_source):
        definition = {**salary_report_def, "parameters": [
            {"name": "status", "type": "string", "defaultValue": "inactive"},
        ]}
        report_manager.create(definition)
        result = await report_manager.execute("salary-by-dept", None, data_source)
        assert result.data == [{"_id": "Sales", "totalSalary": 110000}]

    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, report_manager, salary_report_def, data_source):
        report_manager.create(salary_report_def)
        with pytest.raises(MissingParameterError) as exc_info:
            await report_manager.execute("salary-by-dept", {}, data_source)
        assert exc_info.value.parameter == "status"
        assert isinstance(exc_info.value, ExecutionError)
        assert data_source.fetch_count == 0

    @pytest.mark.asyncio
    async def test_type_preserving_parameter(self, report_manager, data_source):
        report_manager.create({
            "id": "top",
            "name": "Top earners",
            "objectName": "employee",
            "createdBy": "admin",
            "parameters": [{"name": "n", "type": "number", "defaultValue": 2}],
            "stages": [
                {"type": "sort", "body": {"salary": -1}},
                {"type": "limit", "body": {"n": "$param.n"}},
                {"type": "project", "body": {"name": 1}},
            ],
        })
        result = await report_manager.execute("top", None, data_source)
        assert result.data == [{"name": "Ada"}, {"name": "Barbara"}]
        result = await report_manager.execute("top", {"n": 1}, data_source)
        assert result.data == [{"name": "Ada"}]

    @pytest.mark.asyncio
    async def test_undeclared_parameters_pass_through(self, report_manager, data_source):
        report_manager.create({
            "id": "by-city",
            "name": "By city",
            "objectName": "employee",
            "createdBy": "admin",
            "stages": [{"type": "match", "body": {"address.city": "$param.city"}}],
        })
        result = await report_manager.execute("by-city", {"city": "London"}, data_source)
        assert [r["id"] for r in result.data] == ["e1", "e5"]

    @pytest.mark.asyncio
    async def test_execute_does_not_modify_definition(
        self, report_manager, salary_report_def, data_source
    ):
        report = report_manager.create(salary_report_def)
        await report_manager.execute("salary-by-dept", {"status": "active"}, data_source)
        assert report.stages[0].body == {"status": "$param.status"}

    @pytest.mark.asyncio
    async def test_execute_missing_report(self, report_manager, data_source):
        with pytest.raises(NotFoundError):
            await report_manager.execute("nope", {}, data_source)


# ===========================================================================
# 4. Concurrent registration
# ===========================================================================
class TestConcurrentCreate:

    def test_same_id_created_once(self, report_manager, salary_report_def):
        workers = 16
        barrier = threading.Barrier(workers)
        created, conflicts, errors = [], [], []

        def register():
            barrier.wait()
            try:
                created.append(report_manager.create(dict(salary_report_def)))
            except ConflictError as exc:
                conflicts.append(exc)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=register) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert len(created) == 1
        assert len(conflicts) == workers - 1
        assert len(report_manager.list()) == 1
        assert report_manager.get("salary-by-dept") is created[0]
