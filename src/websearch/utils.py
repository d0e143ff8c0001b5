from pathlib import Path

from langchain_core.language_models import BaseChatModel
from langchain_openai import AzureChatOpenAI

from core.config import STRUCTURING_MAX_TOKENS, STRUCTURING_TEMPERATURE, AzureSettings, validate_configuration


def get_llm(
    settings: AzureSettings,
    temperature: float = STRUCTURING_TEMPERATURE,
    max_tokens: int = STRUCTURING_MAX_TOKENS,
) -> BaseChatModel | None:
    """設定に基づいてLLMインスタンスを返すファクトリ関数。認証情報が無ければNone"""
    if not validate_configuration(settings).structuring_ready:
        return None

    return AzureChatOpenAI(
        azure_endpoint=settings.openai_endpoint,
        api_key=settings.openai_api_key,
        azure_deployment=settings.openai_deployment_name,
        api_version=settings.openai_api_version,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )


def load_prompt(filename: str) -> str:
    """promptsディレクトリからMarkdownファイルを読み込む"""
    prompt_path = Path(__file__).parent / "prompts" / filename
    with open(prompt_path, encoding="utf-8") as f:
        return f.read()
