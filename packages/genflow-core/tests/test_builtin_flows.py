from __future__ import annotations

import pytest

from genflow.core.exception import CorruptRecord, FlowExecutionError, MalformedResponse, NotFound, SchemaValidationError
from genflow.core.registry.flows import get_flow, list_flows
from genflow.core.spec import MediaPart
from genflow.core.validation import PLACEHOLDER_DATA_URI

PNG = "data:image/png;base64,iVBORw0KGgo="

GENERATIVE = [
    "analyze_org_structure",
    "analyze_prompt_metadata",
    "create_reminder",
    "digital_employee",
    "execute_prompt",
    "generate_3d_model",
    "generate_prompt",
    "generate_user_profile",
    "get_recommendations",
    "identify_image_objects",
    "intelligent_search",
    "process_supplier_data",
    "recommend_products",
    "requirements_navigator",
    "scenario_architect",
]
RECORD = ["archive_prompt", "list_prompts", "save_prompt"]


def run(name, value, settings, backends):
    return get_flow(name).run_sync(value, settings=settings, backends=backends)


def test_builtin_flows_are_registered():
    assert set(GENERATIVE + RECORD) <= set(list_flows())
    for name in RECORD:
        assert get_flow(name).definition.kind == "record"


def test_scenario_architect(settings, backends, model):
    model.reply(data={"optimizedScenario": "s", "aiAutomatableTasks": "t", "improvementSuggestions": "i"})
    out = run("scenario_architect", {"userRequirements": "招聘流程太慢"}, settings, backends)
    assert out.to_wire() == {"optimizedScenario": "s", "aiAutomatableTasks": "t", "improvementSuggestions": "i"}
    assert "User Requirements: 招聘流程太慢" in model.requests[0].prompt


def test_identify_image_objects_sends_media(settings, backends, model):
    model.reply(data={"identifiedObject": "猫", "tags": ["动物", "宠物"]})
    out = run("identify_image_objects", {"imageDataUri": PNG}, settings, backends)
    assert out.identified_object == "猫" and out.tags == ["动物", "宠物"]
    req = model.requests[0]
    assert req.media == (MediaPart.from_data_uri(PNG),)
    assert "data:image" not in req.prompt


def test_identify_image_objects_rejects_non_data_uri(settings, backends, model):
    with pytest.raises(SchemaValidationError):
        run("identify_image_objects", {"imageDataUri": "cat.png"}, settings, backends)
    assert model.requests == []


def test_intelligent_search_relevance_range(settings, backends, model):
    model.reply(data={"results": [{"title": "a", "snippet": "b", "relevance": 1.2}]})
    with pytest.raises(FlowExecutionError):
        run("intelligent_search", {"query": "q", "knowledgeBase": "kb"}, settings, backends)


def test_supplier_flow_stubbed_uses_rule_table(settings, backends, model):
    stubbed = settings.model_copy(update={"stub_flows": ["process_supplier_data"]})
    out = run(
        "process_supplier_data",
        {"csvData": "名称,类别\n华强电子,电子产品\n美的,家用电器\n顺丰,物流\n", "referenceDate": "2024-06-01"},
        stubbed,
        backends,
    )
    rates = {s.name: s.match_rate for s in out.suppliers}
    assert 70 <= rates["华强电子"] <= 95
    assert 50 <= rates["美的"] <= 70
    assert 10 <= rates["顺丰"] <= 40
    assert {s.added_date for s in out.suppliers} == {"2024-06-01"}
    assert model.requests == []


def test_supplier_flow_prompt_carries_reference_date(settings, backends, model):
    model.reply(data={"suppliers": []})
    run("process_supplier_data", {"csvData": "a,b", "referenceDate": "2024-06-01"}, settings, backends)
    assert "2024-06-01" in model.requests[0].prompt


def test_generate_3d_model(settings, backends, model):
    model.reply(media=MediaPart("image/png", "iVBORw0KGgo="))
    out = run("generate_3d_model", {"prompt": "a red chair"}, settings, backends)
    assert out.model_data_uri == PNG
    req = model.requests[0]
    assert req.model == "gemini-2.0-flash-preview-image-generation"
    assert req.config.wants_image()
    assert 'Prompt: "a red chair"' in req.prompt


def test_generate_3d_model_without_image_fails(settings, backends, model):
    model.reply(text="sorry, text only")
    with pytest.raises(FlowExecutionError) as ei:
        run("generate_3d_model", {"prompt": "a red chair"}, settings, backends)
    assert isinstance(ei.value.cause, MalformedResponse)


def test_generate_3d_model_stubbed_returns_placeholder_image(settings, backends):
    stubbed = settings.model_copy(update={"model_driver": "stub"})
    assert run("generate_3d_model", {"prompt": "x"}, stubbed, backends).model_data_uri == PLACEHOLDER_DATA_URI


def test_analyze_prompt_metadata_fills_missing_fields(settings, backends, model):
    model.reply(text='```json\n{"scope": "招聘", "recommendedModel": "gemini-1.5-pro"}\n```')
    out = run("analyze_prompt_metadata", {"userPrompt": "写招聘启事", "context": "例子"}, settings, backends)
    assert out.scope == "招聘" and out.recommended_model == "gemini-1.5-pro"
    assert out.constraints == "AI未提供约束" and out.scenario == "AI未提供场景"
    req = model.requests[0]
    assert req.config.temperature == 0.2
    assert "[Context/Examples]:\n例子" in req.prompt
    assert req.prompt.startswith("你是一个经验丰富的提示词工程专家")


def test_analyze_prompt_metadata_rejects_non_json(settings, backends, model):
    model.reply(text="I cannot help")
    with pytest.raises(FlowExecutionError):
        run("analyze_prompt_metadata", {"userPrompt": "x"}, settings, backends)


def test_execute_prompt_composes_sections(settings, backends, model):
    model.reply(text="done")
    out = run(
        "execute_prompt",
        {
            "modelId": "deepseek-chat",
            "systemPrompt": "You are HR.",
            "userPrompt": "Write an ad for {{role}} {{missing}}{",
            "context": "Example ad",
            "negativePrompt": "salary",
            "variables": {"role": "engineer"},
        },
        settings,
        backends,
    )
    assert out.response == "done"
    req = model.requests[0]
    assert req.model == "deepseek-chat"
    assert req.config.temperature == 0.7
    assert req.prompt == (
        "System Prompt: You are HR.\n\n"
        "Context/Examples:\nExample ad\n\n---\n\n"
        "User Instruction:\nWrite an ad for engineer {\n\n"
        'IMPORTANT: Do not include any of the following in your response: "salary"'
    )


def test_execute_prompt_json_looking_answer_stays_text(settings, backends, model):
    model.reply(text='{"a": 1}')
    out = run("execute_prompt", {"userPrompt": "give json", "temperature": 0}, settings, backends)
    assert out.response == '{"a": 1}'
    assert model.requests[0].config.temperature == 0


def test_digital_employee_runs_stored_prompt(settings, backends, model):
    saved = run("save_prompt", {"name": "HR", "systemPrompt": "sys", "userPrompt": "Hire a {{role}}"}, settings, backends)
    model.reply(text="ok")
    out = run("digital_employee", {"promptId": saved.id, "variables": {"role": "chef"}}, settings, backends)
    assert out.response == "ok"
    prompt = model.requests[0].prompt
    assert prompt.startswith("System Prompt: sys") and "Hire a chef" in prompt


def test_digital_employee_prefers_unsaved_prompt(settings, backends, model):
    model.reply(text="ok")
    run("digital_employee", {"promptId": "whatever", "userPrompt": "draft {{x}}", "variables": {"x": "1"}}, settings, backends)
    assert model.requests[0].prompt == "User Instruction:\ndraft 1"


def test_digital_employee_archived_or_missing_prompt(settings, backends, model):
    saved = run("save_prompt", {"name": "old", "userPrompt": "x"}, settings, backends)
    run("archive_prompt", {"id": saved.id}, settings, backends)
    for pid in (saved.id, "missing"):
        with pytest.raises(FlowExecutionError) as ei:
            run("digital_employee", {"promptId": pid}, settings, backends)
        assert isinstance(ei.value.cause, NotFound)
    assert model.requests == []


def test_digital_employee_unreadable_prompt_is_flow_error(settings, backends, model):
    backends.store().merge("prompts", "broken", {"scope": "general", "tenantId": "t1", "userPrompt": "x"})
    with pytest.raises(FlowExecutionError) as ei:
        run("digital_employee", {"promptId": "broken"}, settings, backends)
    assert isinstance(ei.value.cause, CorruptRecord)
    assert model.requests == []


def test_create_reminder_and_navigator_stubs(settings, backends):
    stubbed = settings.model_copy(update={"model_driver": "stub"})
    rem = run("create_reminder", {"userInput": "提醒我下午开会"}, stubbed, backends)
    assert rem.title == "下午开会" and rem.date_time == "今天下午5点"
    assert run("create_reminder", {"userInput": "提醒我"}, stubbed, backends).title == "未命名提醒"

    nav = run("requirements_navigator", {"userInput": "确认，就这样"}, stubbed, backends)
    assert nav.is_finished is True and nav.suggested_prompt_id == "recruitment-expert"
    ask = run("requirements_navigator", {"userInput": "我想用AI"}, stubbed, backends)
    assert ask.is_finished is False and ask.suggested_prompt_id is None


def test_requirements_navigator_sends_history(settings, backends, model):
    model.reply(data={"aiResponse": "哪个行业？", "isFinished": False})
    run(
        "requirements_navigator",
        {"userInput": "招聘", "conversationHistory": [{"role": "assistant", "content": "你好"}]},
        settings,
        backends,
    )
    assert '"content": "你好"' in model.requests[0].prompt


def test_record_flows_end_to_end(settings, backends):
    saved = run("save_prompt", {"name": "A", "scope": "general", "userPrompt": "hi"}, settings, backends)
    assert saved.success is True and saved.id

    listed = run("list_prompts", {}, settings, backends)
    assert [(p.name, p.archived) for p in listed.root] == [("A", False)]
    assert listed.model_dump(by_alias=True, mode="json")[0]["userPrompt"] == "hi"

    missing = run("archive_prompt", {"id": "nope"}, settings, backends)
    assert missing.success is False
    assert len(run("list_prompts", {}, settings, backends).root) == 1

    assert run("archive_prompt", {"id": saved.id}, settings, backends).success is True
    assert run("list_prompts", {}, settings, backends).root == []


def test_record_flows_ignore_model_stubbing(settings, backends):
    stubbed = settings.model_copy(update={"model_driver": "stub"})
    assert run("save_prompt", {"name": "A"}, stubbed, backends).success is True
    assert len(run("list_prompts", {}, stubbed, backends).root) == 1


def test_save_prompt_with_unknown_store_driver_reports_failure(settings, backends):
    broken = settings.model_copy(update={"store_driver": "does-not-exist"})
    res = get_flow("save_prompt").run_sync({"name": "A"}, settings=broken)
    assert res.success is False


def test_list_prompts_store_failure_is_flow_execution_error(settings):
    broken = settings.model_copy(update={"store_driver": "does-not-exist"})
    with pytest.raises(FlowExecutionError):
        get_flow("list_prompts").run_sync({}, settings=broken)


def test_save_prompt_rejects_null_required_fields(settings, backends):
    with pytest.raises(SchemaValidationError) as ei:
        run("save_prompt", {"name": None, "userPrompt": "hi"}, settings, backends)
    assert ei.value.fields == ["name"]
    assert run("list_prompts", {}, settings, backends).root == []


def test_memory_store_is_scoped_to_backends_under_run_cache(settings, backends):
    assert settings.connector_cache_default == "run"
    assert get_flow("save_prompt").run_sync({"name": "A"}, settings=settings).success is True
    assert get_flow("list_prompts").run_sync({}, settings=settings).root == []

    run("save_prompt", {"name": "B"}, settings, backends)
    assert [p.name for p in run("list_prompts", {}, settings, backends).root] == ["B"]


PRODUCT = {
    "name": "降噪耳机",
    "description": "主动降噪",
    "image": "https://example.com/a.png",
    "price": "¥999",
    "purchaseUrl": "https://example.com/buy/a",
}


def test_recommend_products(settings, backends, model):
    model.reply(data={"recommendations": [PRODUCT], "reasoning": "适合通勤"})
    out = run(
        "recommend_products",
        {"userNeeds": "通勤用耳机", "availableKnowledge": "kb", "publicResources": "pr", "supplierDatabases": "sd"},
        settings,
        backends,
    )
    assert out.recommendations[0].purchase_url == "https://example.com/buy/a"
    assert out.reasoning == "适合通勤"
    prompt = model.requests[0].prompt
    assert "User Needs: 通勤用耳机" in prompt and "User Profile: \n" in prompt


def test_recommend_products_rejects_bad_urls(settings, backends, model):
    model.reply(data={"recommendations": [{**PRODUCT, "purchaseUrl": "buy here"}], "reasoning": "r"})
    with pytest.raises(FlowExecutionError) as ei:
        run(
            "recommend_products",
            {"userNeeds": "x", "availableKnowledge": "kb", "publicResources": "pr", "supplierDatabases": "sd"},
            settings,
            backends,
        )
    assert isinstance(ei.value.cause, SchemaValidationError)


def test_get_recommendations_searches_then_recommends(settings, backends, model):
    model.reply(data={"results": [{"title": "耳机目录", "snippet": "降噪款", "relevance": 0.9}]})
    model.reply(data={"recommendations": [PRODUCT], "reasoning": "r"})
    out = run(
        "get_recommendations",
        {
            "userNeeds": "降噪耳机",
            "userProfile": "经常出差",
            "knowledgeBase": "耳机目录...",
            "publicResources": "pr",
            "supplierDatabases": "sd",
        },
        settings,
        backends,
    )
    assert [r.name for r in out.recommendations] == ["降噪耳机"]
    search, recommend = (r.prompt for r in model.requests)
    assert 'User Query: "降噪耳机"' in search
    assert '"title": "耳机目录"' in recommend and "User Profile: 经常出差" in recommend


def test_get_recommendations_stubbed(settings, backends, model):
    stubbed = settings.model_copy(update={"model_driver": "stub"})
    out = run(
        "get_recommendations",
        {"userNeeds": "x", "knowledgeBase": "kb", "publicResources": "pr", "supplierDatabases": "sd"},
        stubbed,
        backends,
    )
    assert out.to_wire() == {"recommendations": [], "reasoning": ""}
    assert model.requests == []


def test_generate_user_profile_text_and_image(settings, backends, model):
    model.reply(data={"profileSummary": "喜欢猫", "tags": ["宠物"]})
    out = run("generate_user_profile", {"textInput": "找类似的", "imageDataUri": PNG}, settings, backends)
    assert out.profile_summary == "喜欢猫" and out.tags == ["宠物"]
    assert model.requests[0].media == (MediaPart.from_data_uri(PNG),)

    model.reply(data={"profileSummary": "s", "tags": []})
    run("generate_user_profile", {"textInput": "想买跑鞋"}, settings, backends)
    assert model.requests[1].media == ()
    assert "Input: 想买跑鞋" in model.requests[1].prompt


def test_generate_user_profile_needs_text_or_image(settings, backends, model):
    with pytest.raises(SchemaValidationError):
        run("generate_user_profile", {"textInput": "  "}, settings, backends)
    assert model.requests == []


def test_analyze_org_structure(settings, backends, model):
    model.reply(data={"decisionPoints": "d", "potentialBottlenecks": "b", "improvementSuggestions": "i"})
    out = run("analyze_org_structure", {"orgInfo": "总经理下设三个部门", "companyContext": "制造业，200人"}, settings, backends)
    assert out.to_wire() == {"decisionPoints": "d", "potentialBottlenecks": "b", "improvementSuggestions": "i"}
    prompt = model.requests[0].prompt
    assert "制造业，200人" in prompt and "总经理下设三个部门" in prompt
