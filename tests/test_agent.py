import json

import pytest

from planforge.agent import build_agent, new_task_id
from planforge.schemas import Plan
from tests.fakes import FakeProvider, make_settings


PLAN = {
    "steps": [
        {
            "id": "step_1",
            "description": "Write the greeting",
            "tool": "create_file",
            "parameters": {"path": "a.txt", "content": "hello"},
        },
        {
            "id": "step_2",
            "description": "Record what step_1 reported",
            "tool": "write_file",
            "parameters": {"path": "b.txt", "content": "$step_1"},
            "dependencies": ["a.txt"],
        },
    ]
}


def scripted_factory(scripts):
    providers = {}

    def factory(endpoint, settings):
        provider = FakeProvider(endpoint.name, scripts.get(endpoint.name, []))
        providers[endpoint.name] = provider
        return provider

    return factory, providers


@pytest.mark.asyncio
async def test_task_text_to_artifacts_end_to_end(tmp_path):
    factory, providers = scripted_factory({"fast": [json.dumps(PLAN)]})
    agent = build_agent(make_settings(tmp_path), provider_factory=factory)
    try:
        result = await agent.execute("write a greeting and a receipt")
    finally:
        await agent.aclose()

    assert result.success is True
    assert [s.id for s in result.completed_steps] == ["step_1", "step_2"]
    assert result.plan.get_step("step_2").dependencies == ["step_1"]
    assert {a.path: a.content for a in result.artifacts} == {"a.txt": "hello", "b.txt": "File created: a.txt"}
    assert (tmp_path / "workspace" / "b.txt").read_text() == "File created: a.txt"
    assert result.metadata.total_time_ms > 0
    assert result.metadata.tools_used == ["create_file", "write_file"]
    assert all(p.closed for p in providers.values())
    assert agent.registry.get_stats("create_file")["successful_executions"] == 1


@pytest.mark.asyncio
async def test_planning_failure_is_reported_as_result(tmp_path):
    bad = json.dumps({"steps": [{"id": "step_1", "tool": "summon_dragon"}]})
    factory, _ = scripted_factory({"fast": [bad, bad], "premium": [bad]})
    agent = build_agent(make_settings(tmp_path), provider_factory=factory)
    result = await agent.execute("do something impossible")
    assert result.success is False
    assert result.plan == Plan(steps=[])
    assert "summon_dragon" in result.error
    assert result.completed_steps == []
    assert result.to_dict()["success"] is False


@pytest.mark.asyncio
async def test_execution_failure_keeps_plan_and_error(tmp_path):
    plan = {"steps": [{"id": "step_1", "tool": "read_file", "parameters": {"path": "missing.txt"}}]}
    factory, _ = scripted_factory({"fast": [json.dumps(plan)]})
    agent = build_agent(make_settings(tmp_path, max_retries=2), provider_factory=factory)
    result = await agent.execute("read the missing file")
    assert result.success is False
    assert result.plan.step_ids() == ["step_1"]
    assert result.error.startswith("step_1: Failed after 2 attempts: File not found")


@pytest.mark.asyncio
async def test_generate_plan_without_execution(tmp_path):
    factory, _ = scripted_factory({"fast": [json.dumps(PLAN)]})
    agent = build_agent(make_settings(tmp_path), provider_factory=factory)
    plan = await agent.generate_plan("plan only")
    assert plan.step_ids() == ["step_1", "step_2"]
    assert not (tmp_path / "workspace" / "a.txt").exists()


def test_build_agent_without_premium_uses_two_providers(tmp_path):
    factory, providers = scripted_factory({})
    agent = build_agent(make_settings(tmp_path, premium_endpoint=None), provider_factory=factory)
    assert sorted(providers) == ["fast", "standard"]
    assert len(agent.providers) == 2


def test_task_ids_are_unique():
    ids = {new_task_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(task_id.startswith("task_") for task_id in ids)
