import asyncio
import json
import os
import re
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import ValidationError

from schemas import AnswerPair, QuestionAnalysis


class CompletionError(Exception):
    """Any failure of the completion provider."""


class RateLimitedError(CompletionError):
    """Provider quota exhausted. Not retried automatically."""


class CompletionService(ABC):
    @abstractmethod
    async def generate_questions(
        self, role: str, description: Optional[str] = None, resume_ref: Optional[str] = None
    ) -> list[str]: ...

    @abstractmethod
    async def example_answer(
        self,
        role: str,
        question: str,
        resume_ref: Optional[str] = None,
        context: Optional[str] = None,
    ) -> str: ...

    @abstractmethod
    async def feedback(self, pairs: list[AnswerPair], role: Optional[str] = None) -> str: ...

    @abstractmethod
    async def score(self, pairs: list[AnswerPair], role: Optional[str] = None) -> int: ...

    @abstractmethod
    async def analyze_question(self, question_text: str) -> QuestionAnalysis: ...


def _strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.endswith("```"):
            text = text[:-3]
        elif "```" in text:
            text = text[:text.rfind("```")]
    return text.strip()


def parse_json_response(text: str):
    text = _strip_code_fences(text or "")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Extra prose around the payload: take the outermost object or array.
        match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
        if not match:
            raise CompletionError(f"Provider returned no JSON: {text[:120]!r}")
        try:
            return json.loads(match.group())
        except json.JSONDecodeError as e:
            raise CompletionError(f"Provider returned malformed JSON: {e}") from e


def is_rate_limit_error(exc: Exception) -> bool:
    if getattr(exc, "code", None) == 429:
        return True
    msg = str(exc).lower()
    return "429" in msg or "resource_exhausted" in msg or "quota" in msg


def _pairs_block(pairs: list[AnswerPair]) -> str:
    return "\n".join(f"**Question**: {p.question}\n**Answer**: {p.answer}\n" for p in pairs)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class GeminiCompletionService(CompletionService):
    """CompletionService backed by Gemini through google-genai."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.model = model or os.getenv("COMPLETION_MODEL", "gemini-2.5-flash")
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise CompletionError("GEMINI_API_KEY not configured")
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, prompt: str, json_output: bool = False) -> str:
        client = self._get_client()
        config = {"response_mime_type": "application/json"} if json_output else None
        try:
            response = await asyncio.to_thread(
                client.models.generate_content,
                model=self.model,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            print(f"[COMPLETION] Provider error: {e}")
            if is_rate_limit_error(e):
                raise RateLimitedError(str(e)) from e
            raise CompletionError(str(e)) from e

        text = (response.text or "").strip()
        if not text:
            raise CompletionError("Provider returned an empty response")
        return text

    async def generate_questions(self, role, description=None, resume_ref=None) -> list[str]:
        low = _int_env("QUESTION_COUNT_MIN", 7)
        high = _int_env("QUESTION_COUNT_MAX", 10)
        description_block = ""
        if description:
            description_block = f"""
The candidate has provided the following job description for context:
---
{description}
---
"""
        resume_block = ""
        if resume_ref:
            resume_block = f"""
The candidate's resume:
---
{resume_ref[:3000]}
---
Tailor some questions to the experience it describes.
"""
        prompt = f"""You are an expert hiring manager for the role of {role}.
{description_block}{resume_block}
Your task is to generate a list of {low}-{high} highly relevant interview questions for this role.
The questions should cover a mix of behavioral, technical, and situational topics.
Start with a classic opening question like "Tell me about yourself." or "Walk me through your resume."

Return ONLY a JSON object of the form {{"questions": ["...", "..."]}}."""

        data = parse_json_response(await self._generate(prompt, json_output=True))
        raw = data.get("questions", []) if isinstance(data, dict) else data
        if not isinstance(raw, list):
            raise CompletionError("Provider returned no question list")
        questions = [str(q).strip() for q in raw if str(q).strip()]
        print(f"[COMPLETION] Generated {len(questions)} questions for role={role!r}")
        return questions

    async def example_answer(self, role, question, resume_ref=None, context=None) -> str:
        context_block = ""
        if context:
            context_block = f"""
The candidate asked you to take this into account:
{context}
"""
        resume_block = f"\nThe candidate's resume:\n{resume_ref[:3000]}\n" if resume_ref else ""
        prompt = f"""You are an expert interview coach. A candidate is preparing for an interview for the role of {role}.
Provide an ideal, well-structured, and concise example answer to the following interview question:

"{question}"
{resume_block}{context_block}
The answer should be a single paragraph and get straight to the point, as one would in a real interview. It should follow best practices, such as the STAR method for behavioral questions if applicable.
Your response should ONLY be the example answer text. Do not add any conversational filler or introductory phrases like "Here is a good answer:"."""

        return await self._generate(prompt)

    async def feedback(self, pairs, role=None) -> str:
        prompt = f"""You are an expert interview coach providing final feedback to a candidate who just completed a mock interview{f" for the role of {role}" if role else ""}.

Here are the questions they were asked and the answers they provided.

{_pairs_block(pairs)}
Instructions:
1. Analyze the user's answers provided above. Do NOT comment on skipped questions.
2. Provide a concise, overall summary of their performance.
3. Give 2-3 specific, actionable pieces of feedback for improvement. Frame these as "Areas for Improvement".
4. Highlight 1-2 things the candidate did well. Frame these as "Strengths".
5. The feedback should be encouraging and constructive.
6. The output MUST be plain text. Do not use markdown. Use single empty lines to separate paragraphs."""

        return await self._generate(prompt)

    async def score(self, pairs, role=None) -> int:
        prompt = f"""You are an expert interview evaluator{f" for the role of {role}" if role else ""}.
Rate the candidate's overall interview performance from 0 to 100 based only on these answers.

{_pairs_block(pairs)}
Score strictly. Use 50-60 for average performance, 75+ only with strong evidence.

Return ONLY a JSON object of the form {{"score": <integer 0-100>}}."""

        data = parse_json_response(await self._generate(prompt, json_output=True))
        raw = data.get("score") if isinstance(data, dict) else data
        try:
            value = int(round(float(raw)))
        except (TypeError, ValueError) as e:
            raise CompletionError(f"Provider returned no usable score: {raw!r}") from e
        return max(0, min(100, value))

    async def analyze_question(self, question_text) -> QuestionAnalysis:
        prompt = f"""You are an expert interview coach. Analyze this interview question:

"{question_text}"

Produce a JSON response with EXACTLY this structure:
{{
  "category": "short category such as Behavioral, Technical, Situational, Leadership",
  "difficulty": "Easy|Medium|Hard",
  "tips": ["2-4 short tips for answering it well"],
  "ideal_answer": "a concise ideal answer in one paragraph"
}}

IMPORTANT: Return ONLY valid JSON, no markdown, no extra text."""

        data = parse_json_response(await self._generate(prompt, json_output=True))
        if not isinstance(data, dict):
            raise CompletionError("Provider returned no analysis object")
        if "idealAnswer" in data and "ideal_answer" not in data:
            data["ideal_answer"] = data.pop("idealAnswer")
        difficulty = str(data.get("difficulty", "")).strip().capitalize()
        data["difficulty"] = difficulty if difficulty in {"Easy", "Medium", "Hard"} else "Medium"
        data["tips"] = [str(t).strip() for t in data.get("tips") or [] if str(t).strip()]
        try:
            return QuestionAnalysis(**data)
        except ValidationError as e:
            raise CompletionError(f"Provider returned an invalid analysis: {e}") from e
