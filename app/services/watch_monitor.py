"""
watch_monitor.py - Learner-local watch-integrity loop

Runs beside an embedded video player at roughly 1 Hz. Each tick persists the
playback position and decides whether an attention challenge or the
comprehension quiz is due, pausing the player while either is outstanding.

Provides:
- evaluate_tick(state, position, watched_seconds, policy) - Pure due-ness decision
- PlayerControl - Protocol the embedded player implements
- WatchApi / ServiceWatchApi / HttpWatchApi - Server operations, in-process or over HTTP
- WatchMonitor - The tick loop driving a player through a WatchApi

If fetching a challenge or quiz fails with TransientDependencyError the monitor
fails open: it logs the failure and resumes playback instead of leaving the
learner stuck on a paused video.

Usage:
    monitor = WatchMonitor(HttpWatchApi(base_url, token), player, video_id, day_id=day_id)
    task = asyncio.create_task(monitor.run())
    ...
    task.cancel()   # ends the session best-effort
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx

from app.errors import ProgressionError, TransientDependencyError
from app.services import day_content, watch_integrity
from app.services.policies import WatchPolicy, watch_policy
from app.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)


class TickAction(str, Enum):
    NONE = "NONE"
    CHALLENGE = "CHALLENGE"
    QUIZ = "QUIZ"


class PlayerState(str, Enum):
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


@dataclass
class MonitorState:
    session_id: Optional[int] = None
    last_position: float = 0.0
    last_verification: float = 0.0
    watched_seconds: float = 0.0
    quiz_shown: bool = False
    challenge: Optional[Dict[str, Any]] = None
    quiz: Optional[Dict[str, Any]] = None
    completed: bool = False

    @property
    def blocked(self) -> bool:
        return self.challenge is not None or self.quiz is not None


def evaluate_tick(
    state: MonitorState,
    position: float,
    watched_seconds: float,
    policy: WatchPolicy
) -> TickAction:
    """Decide what a tick must do. A due challenge always wins over the quiz."""
    if state.blocked:
        return TickAction.NONE
    if policy.challenge_due(position, state.last_verification):
        return TickAction.CHALLENGE
    if not state.quiz_shown and policy.quiz_due(watched_seconds):
        return TickAction.QUIZ
    return TickAction.NONE


class PlayerControl(Protocol):
    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def seek(self, seconds: float) -> None: ...

    async def current_time(self) -> float: ...

    async def duration(self) -> float: ...


class WatchApi:
    """Server operations the monitor needs, bound to one learner."""

    async def start_watch(self, video_id: int, plan_day_id: Optional[int]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update_progress(self, session_id: int, position_seconds: float) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_attention_challenge(self, session_id: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def submit_attention_challenge(self, session_id: int, challenge_id: int, word: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_comprehension_quiz(self, session_id: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def submit_comprehension_answer(self, session_id: int, question_id: str, answer: Any) -> Dict[str, Any]:
        raise NotImplementedError

    async def dismiss_comprehension_quiz(self, session_id: int) -> Dict[str, Any]:
        raise NotImplementedError

    async def end_watch(self, session_id: int) -> Dict[str, Any]:
        raise NotImplementedError

    async def mark_video_watched(self, day_id: int, video_id: int) -> Dict[str, Any]:
        raise NotImplementedError


class ServiceWatchApi(WatchApi):
    """Calls the watch-integrity services directly on a database connection."""

    def __init__(self, db, bank: QuestionBank, student_id: int, policy: Optional[WatchPolicy] = None):
        self.db = db
        self.bank = bank
        self.student_id = student_id
        self.policy = policy or watch_policy()

    async def start_watch(self, video_id, plan_day_id):
        return await watch_integrity.start_watch(self.db, self.student_id, video_id, plan_day_id)

    async def update_progress(self, session_id, position_seconds):
        return await watch_integrity.update_progress(
            self.db, self.student_id, session_id, position_seconds, policy=self.policy
        )

    async def get_attention_challenge(self, session_id):
        return await watch_integrity.get_attention_challenge(
            self.db, self.student_id, session_id, policy=self.policy
        )

    async def submit_attention_challenge(self, session_id, challenge_id, word):
        return await watch_integrity.submit_attention_challenge(
            self.db, self.student_id, session_id, challenge_id, word
        )

    async def get_comprehension_quiz(self, session_id):
        return await watch_integrity.get_comprehension_quiz(
            self.db, self.bank, self.student_id, session_id, policy=self.policy
        )

    async def submit_comprehension_answer(self, session_id, question_id, answer):
        return await watch_integrity.submit_comprehension_answer(
            self.db, self.bank, self.student_id, session_id, question_id, answer
        )

    async def dismiss_comprehension_quiz(self, session_id):
        return await watch_integrity.dismiss_comprehension_quiz(self.db, self.student_id, session_id)

    async def end_watch(self, session_id):
        return await watch_integrity.end_watch(self.db, self.student_id, session_id, policy=self.policy)

    async def mark_video_watched(self, day_id, video_id):
        return await day_content.mark_video_watched(self.db, self.student_id, day_id, video_id)


class HttpWatchApi(WatchApi):
    """Calls the /api/videos and /api/study-planner routes with a bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"Watch API {method} {path} failed: {e}")
            raise TransientDependencyError("Watch service unreachable", path=path) from e

        if response.status_code >= 500:
            logger.error(f"Watch API {method} {path} returned {response.status_code}")
            raise TransientDependencyError("Watch service unavailable", path=path, status=response.status_code)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                # Proxies and gateways may answer with HTML
                body = {"detail": response.text}
            if not isinstance(body, dict):
                body = {"detail": response.text}
            raise ProgressionError(body.get("detail", ""), status=response.status_code, server_error=body.get("error"))
        return response.json()

    async def start_watch(self, video_id, plan_day_id):
        return await self._request("POST", f"/api/videos/{video_id}/watch", json={"plan_day_id": plan_day_id})

    async def update_progress(self, session_id, position_seconds):
        return await self._request(
            "POST", "/api/videos/watch/progress",
            json={"session_id": session_id, "position_seconds": position_seconds},
        )

    async def get_attention_challenge(self, session_id):
        body = await self._request("GET", f"/api/videos/watch/{session_id}/challenge")
        return body["challenge"]

    async def submit_attention_challenge(self, session_id, challenge_id, word):
        return await self._request(
            "POST", "/api/videos/watch/challenge",
            json={"session_id": session_id, "challenge_id": challenge_id, "word": word},
        )

    async def get_comprehension_quiz(self, session_id):
        body = await self._request("GET", f"/api/videos/watch/{session_id}/quiz")
        return body["quiz"]

    async def submit_comprehension_answer(self, session_id, question_id, answer):
        return await self._request(
            "POST", "/api/videos/watch/quiz/answer",
            json={"session_id": session_id, "question_id": question_id, "answer": answer},
        )

    async def dismiss_comprehension_quiz(self, session_id):
        return await self._request("POST", "/api/videos/watch/quiz/dismiss", json={"session_id": session_id})

    async def end_watch(self, session_id):
        return await self._request("POST", "/api/videos/watch/end", json={"session_id": session_id})

    async def mark_video_watched(self, day_id, video_id):
        return await self._request(
            "POST", f"/api/study-planner/days/{day_id}/videos", json={"video_id": video_id}
        )


class WatchMonitor:
    """
    Drives one player for one video session.

    The UI calls submit_challenge_word / answer_question / dismiss_quiz in
    response to the learner; run() (or repeated tick() calls) does the rest.
    """

    def __init__(
        self,
        api: WatchApi,
        player: PlayerControl,
        video_id: int,
        day_id: Optional[int] = None,
        policy: Optional[WatchPolicy] = None
    ):
        self.api = api
        self.player = player
        self.video_id = video_id
        self.day_id = day_id
        self.policy = policy or watch_policy()
        self.state = MonitorState()
        self.closed = False
        self.final_session: Optional[Dict[str, Any]] = None

    def _sync(self, session: Dict[str, Any]) -> None:
        self.state.last_position = session["last_position_seconds"]
        # Fail-open advances survive the next sync
        self.state.last_verification = max(self.state.last_verification, session["last_verification_seconds"])
        self.state.watched_seconds = session["total_watch_time_seconds"]
        # The quiz is only done once dismissed; an issued but unseen quiz is fetched again
        self.state.quiz_shown = self.state.quiz_shown or session["quiz_dismissed"]

    async def start(self) -> Dict[str, Any]:
        """Open (or resume) the session and restore the player position."""
        session = await self.api.start_watch(self.video_id, self.day_id)
        self.state.session_id = session["session_id"]
        self._sync(session)
        if session["last_position_seconds"] > 0:
            await self.player.seek(session["last_position_seconds"])

        if session["quiz_triggered"] and not session["quiz_dismissed"]:
            await self._open_quiz()

        logger.info(f"Watch monitor started: video={self.video_id} session={self.state.session_id}")
        return session

    async def tick(self) -> TickAction:
        if self.closed or self.state.session_id is None or self.state.blocked:
            return TickAction.NONE

        position = await self.player.current_time()
        server_wants_challenge = False
        try:
            result = await self.api.update_progress(self.state.session_id, position)
            self._sync(result["session"])
            server_wants_challenge = result["needs_verification"]
        except TransientDependencyError as e:
            logger.warning(f"Progress update failed, continuing locally: {e}")
            self.state.watched_seconds += self.policy.credited_seconds(position, self.state.last_position)
            self.state.last_position = position

        action = evaluate_tick(self.state, position, self.state.watched_seconds, self.policy)
        if server_wants_challenge:
            # A challenge skipped while failing open is still owed to the server
            action = TickAction.CHALLENGE

        if action == TickAction.CHALLENGE:
            if not await self._open_challenge(position):
                return TickAction.NONE
        elif action == TickAction.QUIZ:
            if not await self._open_quiz():
                return TickAction.NONE
        return action

    async def _open_challenge(self, position: float) -> bool:
        try:
            challenge = await self.api.get_attention_challenge(self.state.session_id)
        except TransientDependencyError as e:
            logger.warning(f"Attention challenge fetch failed, resuming playback: {e}")
            self.state.last_verification = position
            await self.player.play()
            return False

        if challenge is None:
            return False
        self.state.challenge = challenge
        await self.player.pause()
        return True

    async def _open_quiz(self) -> bool:
        """Show the quiz if the server issues it; otherwise retry on a later tick."""
        try:
            quiz = await self.api.get_comprehension_quiz(self.state.session_id)
        except TransientDependencyError as e:
            logger.warning(f"Comprehension quiz fetch failed, resuming playback: {e}")
            await self.player.play()
            return False

        if quiz is None:
            return False
        self.state.quiz = quiz
        await self.player.pause()
        return True

    async def submit_challenge_word(self, word: str) -> bool:
        """True when the challenge is cleared and playback resumed."""
        challenge = self.state.challenge
        if challenge is None:
            return False

        try:
            result = await self.api.submit_attention_challenge(
                self.state.session_id, challenge["challenge_id"], word
            )
        except TransientDependencyError as e:
            logger.warning(f"Attention challenge submit failed, resuming playback: {e}")
            self.state.challenge = None
            self.state.last_verification = self.state.last_position
            await self.player.play()
            return True

        if not result["is_correct"]:
            return False
        self._sync(result["session"])
        self.state.challenge = None
        await self.player.play()
        return True

    async def answer_question(self, question_id: str, answer: Any) -> Optional[Dict[str, Any]]:
        if self.state.quiz is None:
            return None
        try:
            graded = await self.api.submit_comprehension_answer(self.state.session_id, question_id, answer)
        except TransientDependencyError as e:
            logger.warning(f"Comprehension answer for {question_id} not recorded: {e}")
            return None
        self.state.quiz.setdefault("answers", {})[question_id] = graded
        return graded

    async def dismiss_quiz(self) -> None:
        """Close the results screen and resume playback, whatever the score."""
        if self.state.quiz is None:
            return
        try:
            await self.api.dismiss_comprehension_quiz(self.state.session_id)
        except TransientDependencyError as e:
            logger.warning(f"Quiz dismissal not recorded, resuming anyway: {e}")
        self.state.quiz = None
        self.state.quiz_shown = True
        await self.player.play()

    async def on_player_state_change(self, player_state: PlayerState) -> None:
        if player_state == PlayerState.ENDED:
            await self.close()
        elif player_state == PlayerState.PLAYING and self.state.blocked:
            # Outstanding challenge or quiz keeps the video paused
            await self.player.pause()

    async def run(self, interval: float = 1.0) -> None:
        """Tick until closed. Cancelling the task still ends the session."""
        if self.state.session_id is None:
            await self.start()
        try:
            while not self.closed:
                await self.tick()
                await asyncio.sleep(interval)
        finally:
            await self.close()

    async def close(self) -> Optional[Dict[str, Any]]:
        """End the session best-effort; repeat calls return the first result."""
        if self.closed:
            return self.final_session
        self.closed = True
        if self.state.session_id is None:
            return None

        try:
            self.final_session = await self.api.end_watch(self.state.session_id)
        except ProgressionError as e:
            logger.warning(f"Ending watch session {self.state.session_id} failed: {e}")
            return None

        self.state.completed = self.final_session["is_completed"]
        if self.state.completed and self.day_id is not None:
            try:
                await self.api.mark_video_watched(self.day_id, self.video_id)
            except ProgressionError as e:
                logger.warning(f"Marking video {self.video_id} watched for day {self.day_id} failed: {e}")

        logger.info(f"Watch monitor closed: session={self.state.session_id} completed={self.state.completed}")
        return self.final_session
