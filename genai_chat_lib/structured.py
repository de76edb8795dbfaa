"""
结构化输出

为调用注入由目标类型推导出的响应Schema，并用 pydantic TypeAdapter 校验模型返回的 JSON。

公开接口:
- generate_structured: 智能体单次结构化生成
- send_structured: 会话内结构化发送
- StructuredAgent: 固定输出类型的智能体封装
"""

from typing import Any, Generic, Optional, Type, TypeVar, Union

from pydantic import TypeAdapter, ValidationError

from .agent import Agent
from .chat import Chat
from .config_merger import clone_generation_config
from .exceptions import EmptyResponseError, StructuredOutputError
from .schemas import AgentConfig, GenerationConfig, Prompt, SchemaConfig

T = TypeVar("T")


def _with_response_schema(
    override: Optional[GenerationConfig], response_type: Any
) -> GenerationConfig:
    config = clone_generation_config(override)
    config.response_schema_config = SchemaConfig(schema_type=response_type)
    return config


def parse_structured(text: str, response_type: Type[T], operation: str = "结构化输出") -> T:
    """
    将模型文本解析为目标类型

    Raises:
        EmptyResponseError: 文本为空
        StructuredOutputError: 文本不是合法 JSON 或不符合目标类型
    """
    if not text.strip():
        raise EmptyResponseError("模型没有返回结构化内容", operation=operation)
    try:
        return TypeAdapter(response_type).validate_json(text)
    except ValidationError as e:
        raise StructuredOutputError(
            "模型输出无法解析为目标结构", operation=operation, original_error=e
        ) from e


async def generate_structured(
    agent: Agent,
    user_id: str,
    prompt: Prompt,
    response_type: Type[T],
    override: Optional[GenerationConfig] = None,
) -> T:
    """智能体单次生成并解析为 response_type"""
    response = await agent.generate(
        user_id, prompt, _with_response_schema(override, response_type)
    )
    return parse_structured(response.text, response_type, operation="结构化生成")


async def send_structured(
    chat: Chat,
    prompt: Prompt,
    response_type: Type[T],
    override: Optional[GenerationConfig] = None,
) -> T:
    """会话内发送并解析为 response_type，模型回复照常写入历史"""
    response = await chat.send_message(prompt, _with_response_schema(override, response_type))
    return parse_structured(response.text, response_type, operation="结构化发送")


class StructuredAgent(Generic[T]):
    """
    固定输出类型的智能体

    使用示例:
        class Summary(BaseModel):
            title: str
            points: List[str]

        summarizer = await StructuredAgent.create(
            client, "summarizer", "你是摘要助手", "用要点总结输入", "gemini-2.5-flash", Summary
        )
        summary = await summarizer.generate_content("……长文本……")
    """

    def __init__(self, agent: Agent, response_type: Type[T]):
        self.agent = agent
        self.response_type = response_type

    @classmethod
    async def create(
        cls,
        client: Any,
        agent_id: str,
        persona: str,
        system_instruction: str,
        model: str,
        response_type: Type[T],
    ) -> "StructuredAgent[T]":
        """
        创建并持久化智能体，默认生成配置中带有目标类型的响应Schema

        Args:
            client: GenAIClient
            agent_id: 智能体 id
            persona: 人设
            system_instruction: 系统指令
            model: 默认模型
            response_type: 输出类型
        """
        config = AgentConfig(
            id=agent_id,
            persona=persona,
            system_instruction=system_instruction,
            default_model=model,
            default_generation_config=GenerationConfig(
                temperature=0.01,
                response_schema_config=SchemaConfig(schema_type=response_type),
            ),
        )
        agent = await client.new_agent(config)
        return cls(agent, response_type)

    async def generate_content(self, prompt: Union[str, Prompt], user_id: str = "") -> T:
        if isinstance(prompt, str):
            prompt = Prompt(text=prompt)
        response = await self.agent.generate(user_id, prompt)
        return parse_structured(response.text, self.response_type, operation="结构化生成")

    async def update_config(
        self, persona: Optional[str] = None, system_instruction: Optional[str] = None
    ) -> None:
        await self.agent.update_config(persona=persona, system_instruction=system_instruction)
