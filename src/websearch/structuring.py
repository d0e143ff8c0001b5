import json
import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from core.definitions import GuidanceCategory
from core.errors import StructuringParseError
from core.schemas import StructuredRegulations
from websearch.extraction import ExtractionEngine
from websearch.utils import load_prompt

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "あなたは建築法規の専門家です。Web検索結果から正確な規制情報を抽出し、構造化されたJSONデータとして出力してください。"
)


def _balanced_end(text: str, start: int) -> int | None:
    """text[start]の'{'に対応する'}'の位置を返す。文字列リテラル内の括弧は数えない"""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def find_json_object(text: str) -> dict | None:
    """テキスト中で最初にJSONとして解釈できるトップレベルのオブジェクトを返す"""
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            try:
                candidate = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                candidate = None
            if isinstance(candidate, dict):
                return candidate
        start = text.find("{", start + 1)
    return None


def parse_structured_response(text: str) -> StructuredRegulations:
    data = find_json_object(text)
    if data is None:
        raise StructuringParseError("No JSON object found in completion response")
    try:
        return StructuredRegulations.model_validate(data)
    except ValidationError as e:
        raise StructuringParseError(f"Unexpected JSON shape: {e.error_count()} validation errors") from e


def _message_text(message: BaseMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    # コンテンツブロック形式の場合はテキストのみ連結する
    parts = []
    for block in message.content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class AIStructuringAdapter:
    """
    検索結果の生テキストをLLMで構造化するクラス。

    LLMが未設定・呼び出し失敗・JSONを取り出せない場合は、同じテキストに対して
    ExtractionEngine.extract_structured を実行した結果を返す。呼び出し側からは
    どちらの経路で得られた結果かは区別できない。
    """

    def __init__(self, llm: BaseChatModel | None, engine: ExtractionEngine | None = None):
        self.llm = llm
        self.engine = engine or ExtractionEngine()

    def build_prompt(self, search_results: str, prefecture: str, city: str) -> str:
        prompt_tmpl = load_prompt("structure_regulations.md")
        return prompt_tmpl.format(
            prefecture=prefecture,
            city=city,
            search_results=search_results,
            guidance_labels="、".join(category.value for category in GuidanceCategory),
        )

    async def structure(self, search_results: str, prefecture: str, city: str) -> StructuredRegulations:
        if self.llm is None:
            logger.warning("Azure OpenAI credentials not configured, using pattern extraction")
            return self._fallback(search_results)

        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=self.build_prompt(search_results, prefecture, city)),
        ]
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error("Azure OpenAI API error: %s", e)
            return self._fallback(search_results)

        try:
            structured = parse_structured_response(_message_text(response))
        except StructuringParseError as e:
            logger.warning("Could not parse structured response (%s), using pattern extraction", e)
            return self._fallback(search_results)

        logger.debug("Structured data extracted: %s", structured.to_wire())
        return structured

    def _fallback(self, search_results: str) -> StructuredRegulations:
        return self.engine.extract_structured(search_results)
