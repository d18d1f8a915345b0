"""Question bank adapters.

The bank is an external collaborator that owns question content and answer
keys. Two adapters are provided:

  - YamlQuestionBank: a local YAML file (dev, seeding, tests)
  - HttpQuestionBank: a remote content service, retried with tenacity and
    surfaced as TransientDependencyError once retries are exhausted

Usage:
    from app.services.question_bank import get_question_bank

    bank = get_question_bank()
    questions = await bank.get_questions(["q1", "q2"])

The adapter is chosen from settings: QUESTION_BANK_URL wins over
QUESTION_BANK_PATH.

YAML layout:

    chapters:
      - subject_id: physics
        chapter_id: kinematics
        questions:
          - {id: k1, type: MCQ, text: "...", options: {A: "..."}, correct_answer: A, topic: velocity}
    videos:
      "1":
        - {id: v1q1, type: TRUE_FALSE, text: "...", correct_answer: "true"}
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import yaml
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

from app.config import settings
from app.errors import NotFound, TransientDependencyError
from app.models.progression import Question

logger = logging.getLogger(__name__)


class QuestionBank:
    """Interface every question bank adapter implements."""

    async def get_questions(self, question_ids: List[str]) -> List[Question]:
        """Fetch questions by id, preserving the requested order."""
        raise NotImplementedError

    async def list_chapter_questions(self, subject_id: str, chapter_id: str) -> List[Question]:
        raise NotImplementedError

    async def get_video_questions(self, video_id: int, count: int) -> List[Question]:
        raise NotImplementedError


class StaticQuestionBank(QuestionBank):
    """In-memory bank keyed by (subject_id, chapter_id) and by video id."""

    def __init__(
        self,
        chapters: Optional[Dict[Tuple[str, str], List[Question]]] = None,
        video_questions: Optional[Dict[int, List[Question]]] = None,
    ):
        self._chapters = chapters or {}
        self._video_questions = video_questions or {}
        self._by_id: Dict[str, Question] = {}
        for questions in list(self._chapters.values()) + list(self._video_questions.values()):
            for q in questions:
                self._by_id[q.id] = q

    async def get_questions(self, question_ids: List[str]) -> List[Question]:
        missing = [qid for qid in question_ids if qid not in self._by_id]
        if missing:
            raise NotFound("Questions not found in bank", question_ids=missing)
        return [self._by_id[qid] for qid in question_ids]

    async def list_chapter_questions(self, subject_id: str, chapter_id: str) -> List[Question]:
        return list(self._chapters.get((subject_id, chapter_id), []))

    async def get_video_questions(self, video_id: int, count: int) -> List[Question]:
        return list(self._video_questions.get(video_id, []))[:count]


def _parse_questions(raw: Iterable[Dict[str, Any]]) -> List[Question]:
    return [Question.model_validate(item) for item in raw or []]


class YamlQuestionBank(StaticQuestionBank):
    """Question bank loaded once from a YAML file."""

    def __init__(self, path: str):
        self.path = Path(path)
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        chapters = {}
        for chapter in data.get("chapters", []):
            key = (str(chapter["subject_id"]), str(chapter["chapter_id"]))
            chapters[key] = _parse_questions(chapter.get("questions", []))

        video_questions = {
            int(video_id): _parse_questions(questions)
            for video_id, questions in (data.get("videos") or {}).items()
        }

        super().__init__(chapters=chapters, video_questions=video_questions)
        logger.info(f"Loaded question bank {self.path}: {len(chapters)} chapters, {len(video_questions)} videos")


def _is_retryable(exc: BaseException) -> bool:
    """Transport failures and 5xx responses are worth retrying; 4xx are not."""
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


class HttpQuestionBank(QuestionBank):
    """Question bank backed by a remote content service."""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def get_questions(self, question_ids: List[str]) -> List[Question]:
        if not question_ids:
            return []
        payload = await self._get_json("/questions", params={"ids": ",".join(question_ids)})
        by_id = {q.id: q for q in _parse_questions(payload.get("questions", []))}
        missing = [qid for qid in question_ids if qid not in by_id]
        if missing:
            raise NotFound("Questions not found in bank", question_ids=missing)
        return [by_id[qid] for qid in question_ids]

    async def list_chapter_questions(self, subject_id: str, chapter_id: str) -> List[Question]:
        payload = await self._get_json(f"/subjects/{subject_id}/chapters/{chapter_id}/questions")
        return _parse_questions(payload.get("questions", []))

    async def get_video_questions(self, video_id: int, count: int) -> List[Question]:
        payload = await self._get_json(f"/videos/{video_id}/questions", params={"count": count})
        return _parse_questions(payload.get("questions", []))[:count]

    async def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        try:
            return await self._fetch(path, params)
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            logger.error(f"Question bank request {path} failed: {e}")
            raise TransientDependencyError("Question bank unavailable", path=path) from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception(_is_retryable),
        before_sleep=lambda retry_state: logger.warning(
            f"Question bank call failed (attempt {retry_state.attempt_number}), retrying: "
            f"{retry_state.outcome.exception()}"
        ),
        reraise=True,
    )
    async def _fetch(self, path: str, params: Optional[dict]) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.get(path, params=params)
            if response.status_code == 404:
                raise NotFound("Question bank resource not found", path=path)
            response.raise_for_status()
            return response.json()


_bank: Optional[QuestionBank] = None


def get_question_bank() -> QuestionBank:
    """FastAPI dependency returning the configured question bank (built once)."""
    global _bank
    if _bank is None:
        if settings.question_bank_url:
            _bank = HttpQuestionBank(settings.question_bank_url, settings.question_bank_timeout_seconds)
        else:
            _bank = YamlQuestionBank(settings.question_bank_path)
    return _bank
