"""Tests for the learner-local watch monitor loop."""

import asyncio

import httpx
import pytest

from app.db import progression as pdb
from app.errors import ProgressionError, TransientDependencyError
from app.services import day_content, study_plan
from app.services.policies import WatchPolicy
from app.services.watch_monitor import (
    HttpWatchApi,
    MonitorState,
    PlayerState,
    ServiceWatchApi,
    TickAction,
    WatchMonitor,
    evaluate_tick,
)

from conftest import CHAPTER, STUDENT, SUBJECT, seed_videos

FAST = WatchPolicy(verification_interval=30, quiz_trigger=50, quiz_question_count=2, max_progress_delta=10)
NO_CHECKS = WatchPolicy(verification_interval=10_000, quiz_trigger=10_000)


class FakePlayer:
    def __init__(self, duration=2000.0):
        self.position = 0.0
        self._duration = duration
        self.playing = True
        self.seeks = []

    async def play(self):
        self.playing = True

    async def pause(self):
        self.playing = False

    async def seek(self, seconds):
        self.seeks.append(seconds)
        self.position = seconds

    async def current_time(self):
        return self.position

    async def duration(self):
        return self._duration


class FlakyApi(ServiceWatchApi):
    """Service API whose challenge and quiz fetches are unavailable."""

    async def get_attention_challenge(self, session_id):
        raise TransientDependencyError("down")

    async def get_comprehension_quiz(self, session_id):
        raise TransientDependencyError("down")


class ChallengeOnceFlakyApi(ServiceWatchApi):
    """Service API whose first challenge fetch fails, then recovers."""

    failed = False

    async def get_attention_challenge(self, session_id):
        if not self.failed:
            self.failed = True
            raise TransientDependencyError("blip")
        return await super().get_attention_challenge(session_id)


class QuizOnceFlakyApi(ServiceWatchApi):
    """Service API whose first quiz fetch fails, then recovers."""

    failed = False

    async def get_comprehension_quiz(self, session_id):
        if not self.failed:
            self.failed = True
            raise TransientDependencyError("blip")
        return await super().get_comprehension_quiz(session_id)


async def advance(monitor, player, to, step=10):
    actions = []
    while player.position < to:
        player.position = min(player.position + step, to)
        actions.append(await monitor.tick())
    return actions


async def watch_through(monitor, player, to, step=10):
    """Tick forward like a learner who answers every prompt right away."""
    actions = []
    while player.position < to:
        player.position = min(player.position + step, to)
        actions.append(await monitor.tick())
        if monitor.state.challenge:
            await monitor.submit_challenge_word(monitor.state.challenge["word"])
        if monitor.state.quiz:
            await monitor.dismiss_quiz()
    return actions


class TestEvaluateTick:

    def test_challenge_wins_over_quiz(self):
        state = MonitorState(session_id=1)
        assert evaluate_tick(state, 30, 50, FAST) == TickAction.CHALLENGE

    def test_quiz_when_no_challenge_due(self):
        state = MonitorState(session_id=1, last_verification=30)
        assert evaluate_tick(state, 50, 50, FAST) == TickAction.QUIZ

    def test_quiz_only_once(self):
        state = MonitorState(session_id=1, last_verification=30, quiz_shown=True)
        assert evaluate_tick(state, 50, 50, FAST) == TickAction.NONE

    def test_blocked_state_does_nothing(self):
        state = MonitorState(session_id=1, challenge={"challenge_id": 1})
        assert evaluate_tick(state, 30, 50, FAST) == TickAction.NONE


class TestWatchMonitor:

    def test_challenge_pauses_until_exact_word(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(ServiceWatchApi(db, bank, STUDENT, FAST), player, video_id, policy=FAST)
            await monitor.start()

            actions = await advance(monitor, player, 30)
            paused = player.playing
            blocked_tick = await monitor.tick()
            wrong = await monitor.submit_challenge_word("not-the-word")
            still_paused = player.playing
            right = await monitor.submit_challenge_word(monitor.state.challenge["word"])
            return actions, paused, blocked_tick, wrong, still_paused, right, player.playing, monitor.state

        actions, paused, blocked_tick, wrong, still_paused, right, playing, state = run_db(scenario)
        assert actions == [TickAction.NONE, TickAction.NONE, TickAction.CHALLENGE]
        assert paused is False
        assert blocked_tick == TickAction.NONE
        assert wrong is False
        assert still_paused is False
        assert right is True
        assert playing is True
        assert state.last_verification == 30
        assert state.challenge is None

    def test_quiz_follows_and_can_be_dismissed(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(ServiceWatchApi(db, bank, STUDENT, FAST), player, video_id, policy=FAST)
            await monitor.start()

            await advance(monitor, player, 30)
            await monitor.submit_challenge_word(monitor.state.challenge["word"])
            actions = await advance(monitor, player, 50)
            quiz = monitor.state.quiz
            graded = await monitor.answer_question(quiz["questions"][0]["id"], "true")
            await monitor.dismiss_quiz()
            later = await advance(monitor, player, 59)
            return actions, quiz, graded, monitor.state, player.playing, later

        actions, quiz, graded, state, playing, later = run_db(scenario)
        assert actions == [TickAction.NONE, TickAction.QUIZ]
        assert len(quiz["questions"]) == 2
        assert graded["is_correct"] is True
        assert state.quiz is None
        assert state.quiz_shown is True
        assert playing is True
        assert TickAction.QUIZ not in later

    def test_player_cannot_resume_while_blocked(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(ServiceWatchApi(db, bank, STUDENT, FAST), player, video_id, policy=FAST)
            await monitor.start()
            await advance(monitor, player, 30)
            player.playing = True
            await monitor.on_player_state_change(PlayerState.PLAYING)
            return player.playing

        assert run_db(scenario) is False

    def test_fails_open_when_fetches_are_unavailable(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(FlakyApi(db, bank, STUDENT, FAST), player, video_id, policy=FAST)
            await monitor.start()
            actions = await advance(monitor, player, 60)
            return actions, player.playing, monitor.state

        actions, playing, state = run_db(scenario)
        assert all(a == TickAction.NONE for a in actions)
        assert playing is True
        assert state.blocked is False
        assert state.quiz_shown is False
        assert state.last_verification == 60

    def test_skipped_challenge_is_reissued_and_quiz_still_follows(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(ChallengeOnceFlakyApi(db, bank, STUDENT, FAST), player, video_id, policy=FAST)
            await monitor.start()
            actions = await watch_through(monitor, player, 200)
            session = await pdb.get_watch_session(db, monitor.state.session_id)
            return actions, session

        actions, session = run_db(scenario)
        assert actions[:5] == [
            TickAction.NONE, TickAction.NONE, TickAction.NONE, TickAction.CHALLENGE, TickAction.QUIZ,
        ]
        assert actions.count(TickAction.QUIZ) == 1
        assert session["quiz_triggered_at_seconds"] == 50
        assert session["quiz_dismissed_at"] is not None

    def test_failed_quiz_fetch_is_retried(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(QuizOnceFlakyApi(db, bank, STUDENT, FAST), player, video_id, policy=FAST)
            await monitor.start()
            return await watch_through(monitor, player, 80), monitor.state

        actions, state = run_db(scenario)
        N, C, Q = TickAction.NONE, TickAction.CHALLENGE, TickAction.QUIZ
        assert actions == [N, N, C, N, N, C, Q, N]
        assert state.quiz_shown is True

    def test_resume_seeks_to_last_position(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            first = FakePlayer()
            monitor = WatchMonitor(ServiceWatchApi(db, bank, STUDENT, NO_CHECKS), first, video_id, policy=NO_CHECKS)
            await monitor.start()
            await advance(monitor, first, 20)

            second = FakePlayer()
            resumed = WatchMonitor(ServiceWatchApi(db, bank, STUDENT, NO_CHECKS), second, video_id, policy=NO_CHECKS)
            await resumed.start()
            return monitor.state.session_id, resumed.state.session_id, second.seeks

        first_id, second_id, seeks = run_db(scenario)
        assert first_id == second_id
        assert seeks == [20]

    def test_end_of_video_marks_day_video_watched(self, run_db, bank):
        async def scenario(db):
            await seed_videos(db, duration=60)
            plan = await study_plan.create_plan(db, bank, STUDENT, SUBJECT, CHAPTER, "standard")
            day_id = plan["days"][0]["day_id"]
            day = await pdb.get_plan_day(db, day_id)
            video_id = day["video_ids"][0]

            player = FakePlayer(duration=60)
            monitor = WatchMonitor(
                ServiceWatchApi(db, bank, STUDENT, NO_CHECKS), player, video_id, day_id=day_id, policy=NO_CHECKS
            )
            await monitor.start()
            await advance(monitor, player, 60)
            await monitor.on_player_state_change(PlayerState.ENDED)
            again = await monitor.close()
            view = await day_content.get_day(db, bank, STUDENT, day_id)
            return monitor.final_session, again, view

        final, again, view = run_db(scenario)
        assert final["is_completed"] is True
        assert again == final
        assert view["videos_watched"] == 1

    def test_cancelled_run_still_ends_session(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            player = FakePlayer()
            monitor = WatchMonitor(ServiceWatchApi(db, bank, STUDENT, NO_CHECKS), player, video_id, policy=NO_CHECKS)
            task = asyncio.create_task(monitor.run(interval=0.01))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return await pdb.get_watch_session(db, monitor.state.session_id), monitor.final_session

        session, final = run_db(scenario)
        assert session["ended_at"] is not None
        assert final["is_completed"] is False


class TestHttpWatchApi:

    def _api(self, handler):
        return HttpWatchApi("http://watch.test", "token", transport=httpx.MockTransport(handler))

    def test_sends_bearer_token_and_unwraps_challenge(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"challenge": {"challenge_id": 3, "word": "river", "at_seconds": 300}})

        async def main():
            api = self._api(handler)
            try:
                return await api.get_attention_challenge(12)
            finally:
                await api.aclose()

        challenge = asyncio.run(main())
        assert challenge["word"] == "river"
        assert seen == {"auth": "Bearer token", "path": "/api/videos/watch/12/challenge"}

    def test_server_errors_are_transient(self):
        async def main():
            api = self._api(lambda request: httpx.Response(503, json={"detail": "busy"}))
            try:
                await api.update_progress(1, 10)
            finally:
                await api.aclose()

        with pytest.raises(TransientDependencyError):
            asyncio.run(main())

    def test_unreachable_server_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async def main():
            api = self._api(handler)
            try:
                await api.end_watch(1)
            finally:
                await api.aclose()

        with pytest.raises(TransientDependencyError):
            asyncio.run(main())

    def test_client_errors_keep_status_and_code(self):
        def handler(request):
            return httpx.Response(409, json={"detail": "Watch session has ended", "error": "no_open_session"})

        async def main():
            api = self._api(handler)
            try:
                await api.update_progress(1, 10)
            finally:
                await api.aclose()

        with pytest.raises(ProgressionError) as exc:
            asyncio.run(main())
        assert not isinstance(exc.value, TransientDependencyError)
        assert exc.value.detail == {"status": 409, "server_error": "no_open_session"}

    def test_non_json_client_error_is_still_a_progression_error(self):
        def handler(request):
            return httpx.Response(404, text="<html>Not Found</html>", headers={"Content-Type": "text/html"})

        async def main():
            api = self._api(handler)
            monitor = WatchMonitor(api, FakePlayer(), video_id=1, policy=NO_CHECKS)
            monitor.state.session_id = 5
            try:
                with pytest.raises(ProgressionError) as exc:
                    await api.update_progress(5, 10)
                closed = await monitor.close()
            finally:
                await api.aclose()
            return exc.value, closed, monitor.closed

        error, closed, is_closed = asyncio.run(main())
        assert error.message == "<html>Not Found</html>"
        assert error.detail == {"status": 404, "server_error": None}
        assert closed is None
        assert is_closed is True
