from __future__ import annotations

import json
import logging
from typing import Any, Dict

from genflow.core.context import FlowContext
from genflow.core.engine import define_flow, flow
from genflow.core.exception import MalformedResponse, NotFound
from genflow.core.spec import (
    AnalyzePromptMetadataInput,
    AnalyzePromptMetadataOutput,
    AnalyzeOrgStructureInput,
    AnalyzeOrgStructureOutput,
    ArchivePromptInput,
    ArchiveResult,
    CreateReminderInput,
    CreateReminderOutput,
    DigitalEmployeeInput,
    Generate3dModelInput,
    Generate3dModelOutput,
    GenerationConfig,
    GeneratePromptInput,
    GeneratePromptOutput,
    GenerateUserProfileInput,
    GenerateUserProfileOutput,
    GetRecommendationsInput,
    IdentifyImageObjectsInput,
    IdentifyImageObjectsOutput,
    IntelligentSearchInput,
    IntelligentSearchOutput,
    ListPromptsInput,
    PromptExecutionInput,
    PromptExecutionOutput,
    PromptList,
    RecommendProductsInput,
    RecommendProductsOutput,
    RequirementsNavigatorInput,
    RequirementsNavigatorOutput,
    SavePromptInput,
    SaveResult,
    ScenarioArchitectInput,
    ScenarioArchitectOutput,
    SupplierDataInput,
    SupplierDataOutput,
)
from genflow.core.suppliers import score_suppliers

log = logging.getLogger("genflow.core.builtin.flows")

IMAGE_MODEL = "gemini-2.0-flash-preview-image-generation"
DEFAULT_TEMPERATURE = 0.7
METADATA_TEMPERATURE = 0.2


# ---------------------------------------------------------------------------
# Template flows: render the prompt, invoke in JSON mode, coerce.
# ---------------------------------------------------------------------------

scenario_architect = define_flow(
    "scenario_architect",
    ScenarioArchitectInput,
    ScenarioArchitectOutput,
    prompt="""Based on the following user requirements, generate an optimized work scenario, identify tasks suitable for AI automation, and provide improvement suggestions.

User Requirements: {{userRequirements}}

Optimized Scenario: A detailed description of the optimized work scenario.
AI Automatable Tasks: A list of tasks within the scenario that are suitable for AI automation.
Improvement Suggestions: Suggestions for improving the workflow and leveraging AI effectively.""",
    description="Optimized scenario, automatable tasks and suggestions for a requirement.",
)

identify_image_objects = define_flow(
    "identify_image_objects",
    IdentifyImageObjectsInput,
    IdentifyImageObjectsOutput,
    prompt="""You are an AI assistant that identifies the primary object in an image.

Your goal is to analyze the image and determine what the main subject is.
Based on the main subject, generate a concise name for the identified object and a list of relevant tags.

Your response must be in Chinese.

Image: {{media url=imageDataUri}}""",
    description="Name and tags for the main subject of an image.",
)

intelligent_search = define_flow(
    "intelligent_search",
    IntelligentSearchInput,
    IntelligentSearchOutput,
    prompt='''You are an AI-powered search engine. Your task is to find the most relevant information from the provided knowledge base based on the user's query.

Your response must be in Chinese.

Knowledge Base:
"""
{{knowledgeBase}}
"""

User Query: "{{query}}"

Analyze the query and the knowledge base, and return a list of relevant results. For each result, provide a title, a short snippet, and a relevance score from 0 to 1.''',
    description="Relevant knowledge-base passages for a query.",
)

process_supplier_data = define_flow(
    "process_supplier_data",
    SupplierDataInput,
    SupplierDataOutput,
    prompt='''你是一个智能数据处理助手。你的任务是解析以下 CSV 格式的供应商数据，并为每个供应商评估一个“匹配度”。

匹配度是一个 0 到 100 之间的分数，它代表了该供应商与一个专注于“高科技消费电子产品”和“创新智能家居解决方案”的公司的相关性。

- 对于电子产品、软件或科技领域的供应商，给予较高的匹配度（70-95）。
- 对于家用电器或相关服务的供应商，给予中等匹配度（50-70）。
- 对于其他所有类别的供应商，给予较低的匹配度（10-40）。

请将“addedDate”统一设置为今天的日期：{{referenceDate}}。

CSV 数据:
"""
{{csvData}}
"""

请严格按照输出格式要求返回结果。''',
    stub=score_suppliers,
    description="Parse supplier CSV and score each supplier's match rate.",
)

generate_prompt = define_flow(
    "generate_prompt",
    GeneratePromptInput,
    GeneratePromptOutput,
    prompt="Generate a prompt based on the user input and the prompt template.\n\nUser Input: {{userInput}}\nPrompt Template: {{promptTemplate}}",
    description="Fill a prompt template from free-form user input.",
)

recommend_products = define_flow(
    "recommend_products",
    RecommendProductsInput,
    RecommendProductsOutput,
    prompt="""You are an AI recommendation engine that suggests products or services to users based on their needs and available information.

Analyze the user's needs, user profile (if available), available knowledge, public resources, and supplier databases to identify the most suitable options.

Your response must be in Chinese.

User Needs: {{userNeeds}}
User Profile: {{userProfile}}
Available Knowledge: {{availableKnowledge}}
Public Resources: {{publicResources}}
Supplier Databases: {{supplierDatabases}}

Provide a list of 3 to 5 recommended products or services. For each, you must provide a name, description, image URL, price, and a purchase URL, extracting this information directly from the provided knowledge base.
Also provide a clear explanation of why these recommendations are suitable for the user.""",
    description="Products or services matching the user's needs, with reasoning.",
)

generate_user_profile = define_flow(
    "generate_user_profile",
    GenerateUserProfileInput,
    GenerateUserProfileOutput,
    prompt="""You are an AI assistant that generates user profiles based on user input.

Your primary goal is to analyze the user's request, which can be text, an image, or both, to understand their needs and generate an accurate profile summary and a list of relevant tags.

If an image is provided, your analysis should start with the image. Identify the main objects, scenes, and any key features within the picture. These visual cues are the most important part of the user's request.
- If the user provides text along with the image, use the text to refine the request.
- If no text is provided, your analysis should be based purely on the image content.

If only text is provided, analyze the text for the user's interests, preferences, and needs.

Your response must be in Chinese.

Input: {{textInput}}
{{media url=imageDataUri}}""",
    description="Profile summary and tags from a text and/or image request.",
)

analyze_org_structure = define_flow(
    "analyze_org_structure",
    AnalyzeOrgStructureInput,
    AnalyzeOrgStructureOutput,
    prompt="""You are an expert management consultant specializing in organizational structure and process optimization. Your task is to analyze the provided text about a company's internal mechanisms, using the company's basic information as crucial context.

Based on the user's description of their organization and company, please perform the following analysis. Ensure your response is tailored to 人事 (HR) and 经营管理 (business management) aspects.

Company Basic Information (Context):
{{companyContext}}

User's Organizational Structure:
{{orgInfo}}

Your analysis should include:
1. Key Decision Points: Identify and summarize the crucial decision-making nodes, departments, or roles within the described structure and processes.
2. Potential Bottlenecks: Pinpoint any areas that could lead to delays, communication breakdowns, or inefficiencies.
3. Improvement Suggestions: Provide clear, concise, and actionable recommendations to optimize the structure, streamline processes, and improve overall management efficiency.""",
    description="Decision points, bottlenecks and suggestions for an organization.",
)


def _strip_reminder_words(value: CreateReminderInput) -> Dict[str, str]:
    title = value.user_input.replace("提醒我", "").replace("安排", "").strip()
    return {"title": title or "未命名提醒", "dateTime": "今天下午5点"}


create_reminder = define_flow(
    "create_reminder",
    CreateReminderInput,
    CreateReminderOutput,
    prompt="""You are an assistant that helps users create reminders from natural language. Analyze the user's input and extract the title of the reminder and the specific date and time, in a human-readable format (e.g. "今天下午5点", "明天上午10点").

User Input: {{userInput}}

Extract the information and provide it in the specified format.""",
    stub=_strip_reminder_words,
    description="Reminder title and time from a natural-language request.",
)

NAVIGATOR_DONE = "好的，需求已确认。正在为您寻找合适的解决方案..."
NAVIGATOR_ASK = "请问您希望在哪个行业应用AI？例如：人力资源、市场营销"


def _navigator_reply(value: RequirementsNavigatorInput) -> Dict[str, Any]:
    finished = "确认" in value.user_input.lower()
    return {
        "aiResponse": NAVIGATOR_DONE if finished else NAVIGATOR_ASK,
        "isFinished": finished,
        "suggestedPromptId": "recruitment-expert" if finished else None,
    }


requirements_navigator = define_flow(
    "requirements_navigator",
    RequirementsNavigatorInput,
    RequirementsNavigatorOutput,
    prompt="""你是一名AI需求导航员，通过多轮对话帮助用户梳理他们希望用AI解决的业务需求。
每次只提出一个澄清问题。当用户确认需求后，总结需求并将 isFinished 设为 true。

对话历史（JSON）:
{{conversationHistory}}

用户最新输入: {{userInput}}""",
    stub=_navigator_reply,
    description="One turn of the requirements-gathering conversation.",
)


# ---------------------------------------------------------------------------
# Flows with custom bodies
# ---------------------------------------------------------------------------


@flow("generate_3d_model", Generate3dModelInput, Generate3dModelOutput, model=IMAGE_MODEL)
async def generate_3d_model(ctx: FlowContext, value: Generate3dModelInput) -> Any:
    """Render a 3D-model style image for a description."""
    full_prompt = (
        "Generate a high-quality, professional 3D model rendering based on the following description. "
        f'The model should be centered on a clean, neutral background. Prompt: "{value.prompt}"'
    )
    raw = await ctx.generate(full_prompt, config=GenerationConfig(response_modalities=["TEXT", "IMAGE"]))
    if raw.media is None:
        raise MalformedResponse("Failed to generate 3D model image.")
    return {"modelDataUri": raw.media.url}


METADATA_INSTRUCTION = """你是一个经验丰富的提示词工程专家。你的任务是分析用户提供的结构化提示词，并为其生成准确、专业的元数据。

请严格按照以下要求，并遵循JSON输出格式：

1.  **适用范围 (scope)**: 总结这个提示词主要适用于哪个领域或哪一类任务。
2.  **推荐模型 (recommendedModel)**: 根据提示词的复杂度、语言和任务类型，推荐最合适的Google Gemini模型（例如：gemini-1.5-flash适用于简单、快速的任务；gemini-1.5-pro适用于复杂的推理和多语言任务）。
3.  **约束条件 (constraints)**: 指出使用此提示词时需要注意的潜在问题、限制或前提条件。例如，它是否依赖特定格式的输入变量。
4.  **适用场景 (scenario)**: 描述1-2个这个提示词可以被有效利用的具体业务场景。"""

METADATA_FALLBACKS = {
    "scope": "AI未提供范围",
    "recommendedModel": "AI未推荐模型",
    "constraints": "AI未提供约束",
    "scenario": "AI未提供场景",
}


@flow(
    "analyze_prompt_metadata",
    AnalyzePromptMetadataInput,
    AnalyzePromptMetadataOutput,
    config=GenerationConfig(temperature=METADATA_TEMPERATURE),
)
async def analyze_prompt_metadata(ctx: FlowContext, value: AnalyzePromptMetadataInput) -> Any:
    """Scope, recommended model, constraints and scenario for a prompt."""
    content = f"[User Prompt]:\n{value.user_prompt}"
    if value.context:
        content += f"\n\n[Context/Examples]:\n{value.context}"
    if value.negative_prompt:
        content += f"\n\n[Negative Prompt]:\n{value.negative_prompt}"
    content += "\n\n请严格以JSON格式返回你的分析结果。"

    system = value.system_prompt or METADATA_INSTRUCTION
    raw = await ctx.generate(
        f"{system}\n\n{content}",
        json_schema=AnalyzePromptMetadataOutput.model_json_schema(by_alias=True),
    )
    if not isinstance(raw.data, dict):
        raise MalformedResponse("AI返回的元数据格式无效，无法解析。")

    out = dict(METADATA_FALLBACKS)
    for key in out:
        v = raw.data.get(key)
        if isinstance(v, str) and v.strip():
            out[key] = v
        elif v:
            log.warning("metadata field %s is not a string; using fallback", key)
    return out


def compose_prompt(
    user_prompt: str,
    *,
    system_prompt: str | None = None,
    context: str | None = None,
    negative_prompt: str | None = None,
) -> str:
    """Assemble the single prompt text sent for a stored prompt."""
    text = ""
    if system_prompt:
        text += f"System Prompt: {system_prompt}\n\n"
    if context:
        text += f"Context/Examples:\n{context}\n\n---\n\n"
    text += f"User Instruction:\n{user_prompt}"
    if negative_prompt:
        text += f'\n\nIMPORTANT: Do not include any of the following in your response: "{negative_prompt}"'
    return text


@flow("execute_prompt", PromptExecutionInput, PromptExecutionOutput)
async def execute_prompt(ctx: FlowContext, value: PromptExecutionInput) -> Any:
    """Run a caller-supplied prompt with variable substitution."""
    user = ctx.render(value.user_prompt, value.variables, strict=False)
    full = compose_prompt(
        user,
        system_prompt=value.system_prompt,
        context=value.context,
        negative_prompt=value.negative_prompt,
    )
    temperature = DEFAULT_TEMPERATURE if value.temperature is None else value.temperature
    raw = await ctx.generate(full, model=value.model_id, config=GenerationConfig(temperature=temperature))
    return {"response": raw.text or ""}


@flow("digital_employee", DigitalEmployeeInput, PromptExecutionOutput)
async def digital_employee(ctx: FlowContext, value: DigitalEmployeeInput) -> Any:
    """Execute a stored prompt by id, or an unsaved prompt under test."""
    if value.user_prompt:
        source: Dict[str, Any] = {
            "systemPrompt": value.system_prompt,
            "userPrompt": value.user_prompt,
            "context": value.context,
            "negativePrompt": value.negative_prompt,
        }
    else:
        record = await ctx.run_sync(ctx.prompts.get, value.prompt_id)
        if record.archived:
            raise NotFound(ctx.prompts.collection, record.id)
        source = {
            "systemPrompt": record.system_prompt,
            "userPrompt": record.user_prompt,
            "context": record.context,
            "negativePrompt": record.negative_prompt,
        }

    payload = {k: v for k, v in source.items() if v is not None}
    payload.update(modelId=value.model_id, variables=value.variables, temperature=value.temperature)
    return await ctx.call("execute_prompt", payload)


@flow("get_recommendations", GetRecommendationsInput, RecommendProductsOutput)
async def get_recommendations(ctx: FlowContext, value: GetRecommendationsInput) -> Any:
    """Search the knowledge base for the user's needs, then recommend from the hits."""
    found = await ctx.call("intelligent_search", {"query": value.user_needs, "knowledgeBase": value.knowledge_base})
    hits = [r.model_dump(by_alias=True, mode="json") for r in found.results]
    ctx.log.info("recommendation search hits=%d", len(hits))
    return await ctx.call(
        "recommend_products",
        {
            "userNeeds": value.user_needs,
            "userProfile": value.user_profile,
            "availableKnowledge": json.dumps(hits, ensure_ascii=False),
            "publicResources": value.public_resources,
            "supplierDatabases": value.supplier_databases,
        },
    )


# ---------------------------------------------------------------------------
# Record flows: prompt library
# ---------------------------------------------------------------------------


@flow("list_prompts", ListPromptsInput, PromptList, kind="record")
def list_prompts(ctx: FlowContext, value: ListPromptsInput) -> Any:
    """Non-archived prompts, most recently updated first."""
    return ctx.prompts.list()


@flow("save_prompt", SavePromptInput, SaveResult, kind="record")
def save_prompt(ctx: FlowContext, value: SavePromptInput) -> Any:
    """Create a prompt, or update the supplied fields of an existing one."""
    return ctx.prompts.save(value)


@flow("archive_prompt", ArchivePromptInput, ArchiveResult, kind="record")
def archive_prompt(ctx: FlowContext, value: ArchivePromptInput) -> Any:
    """Soft-delete a prompt."""
    return ctx.prompts.archive(value.id)
