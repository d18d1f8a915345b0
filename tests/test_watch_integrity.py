"""Tests for watch sessions, attention challenges and the comprehension quiz."""

import asyncio

import pytest

from app.db import progression as pdb
from app.errors import DayLocked, InvalidState, NoOpenSession, NotFound, ValidationError
from app.services import study_plan, watch_integrity
from app.services.policies import WatchPolicy

from conftest import CHAPTER, OTHER_STUDENT, STUDENT, SUBJECT, seed_videos


async def play(db, session_id, start, end, step=1.0):
    """Advance playback second by second, like the 1 Hz client loop."""
    position = start
    result = None
    while position < end:
        position = min(position + step, end)
        result = await watch_integrity.update_progress(db, STUDENT, session_id, position)
    return result


async def clear_challenge(db, session_id):
    challenge = await watch_integrity.get_attention_challenge(db, STUDENT, session_id)
    return await watch_integrity.submit_attention_challenge(
        db, STUDENT, session_id, challenge["challenge_id"], challenge["word"]
    )


class TestWatchPolicy:

    def test_credited_seconds_are_capped(self):
        policy = WatchPolicy()
        assert policy.credited_seconds(11, 10) == 1
        assert policy.credited_seconds(500, 10) == 10
        assert policy.credited_seconds(5, 10) == 0

    def test_completion_tolerance(self):
        policy = WatchPolicy()
        assert policy.reached_end(1995, 2000) is True
        assert policy.reached_end(1994, 2000) is False


class TestSessions:

    def test_start_is_resumable(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            first = await watch_integrity.start_watch(db, STUDENT, video_id)
            await watch_integrity.update_progress(db, STUDENT, first["session_id"], 1)
            second = await watch_integrity.start_watch(db, STUDENT, video_id)
            return first, second

        first, second = run_db(scenario)
        assert first["session_id"] == second["session_id"]
        assert second["last_position_seconds"] == 1

    def test_concurrent_starts_share_one_session(self, db_path):
        from app.db.database import connect

        async def main():
            db = await connect(db_path)
            try:
                video_id = (await seed_videos(db, count=1))[0]
            finally:
                await db.close()

            async def start():
                conn = await connect(db_path)
                try:
                    return await watch_integrity.start_watch(conn, STUDENT, video_id)
                finally:
                    await conn.close()

            return await asyncio.gather(start(), start(), start())

        sessions = asyncio.run(main())
        assert len({s["session_id"] for s in sessions}) == 1

    def test_unknown_video_and_foreign_session(self, run_db):
        async def scenario(db):
            with pytest.raises(NotFound):
                await watch_integrity.start_watch(db, STUDENT, 404)
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            with pytest.raises(NotFound):
                await watch_integrity.update_progress(db, OTHER_STUDENT, session["session_id"], 5)

        run_db(scenario)

    def test_watch_time_grows_by_capped_delta(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            await watch_integrity.update_progress(db, STUDENT, sid, 5)
            await watch_integrity.update_progress(db, STUDENT, sid, 500)   # seek ahead
            await watch_integrity.update_progress(db, STUDENT, sid, 100)   # seek back
            return await watch_integrity.update_progress(db, STUDENT, sid, 103)

        result = run_db(scenario)
        assert result["session"]["total_watch_time_seconds"] == 5 + 10 + 0 + 3
        assert result["session"]["last_position_seconds"] == 103

    def test_end_watch_is_idempotent_and_checks_completion(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1, duration=20))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            await play(db, sid, 0, 16)
            ended = await watch_integrity.end_watch(db, STUDENT, sid)
            again = await watch_integrity.end_watch(db, STUDENT, sid)
            with pytest.raises(NoOpenSession):
                await watch_integrity.update_progress(db, STUDENT, sid, 17)
            with pytest.raises(NoOpenSession):
                await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            reopened = await watch_integrity.start_watch(db, STUDENT, video_id)
            return ended, again, reopened

        ended, again, reopened = run_db(scenario)
        assert ended["is_completed"] is True
        assert again == ended
        assert reopened["session_id"] != ended["session_id"]

    def test_short_watch_is_not_completed(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1, duration=20))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            await play(db, session["session_id"], 0, 10)
            return await watch_integrity.end_watch(db, STUDENT, session["session_id"])

        assert run_db(scenario)["is_completed"] is False

    def test_plan_day_binding_is_checked(self, run_db, bank):
        async def scenario(db):
            await seed_videos(db)
            plan = await study_plan.create_plan(db, bank, STUDENT, SUBJECT, CHAPTER, "standard")
            day1 = await pdb.get_plan_day(db, plan["days"][0]["day_id"])
            day2 = await pdb.get_plan_day(db, plan["days"][1]["day_id"])
            with pytest.raises(ValidationError):
                await watch_integrity.start_watch(db, STUDENT, day2["video_ids"][0], plan_day_id=day1["id"])
            with pytest.raises(DayLocked):
                await watch_integrity.start_watch(db, STUDENT, day2["video_ids"][0], plan_day_id=day2["id"])
            return await watch_integrity.start_watch(db, STUDENT, day1["video_ids"][0], plan_day_id=day1["id"])

        assert run_db(scenario)["plan_day_id"] is not None


class TestAttentionChallenge:

    def test_first_challenge_at_video_position_not_wall_clock(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            # 100 ticks while paused: position never moves
            for _ in range(100):
                paused = await watch_integrity.update_progress(db, STUDENT, sid, 0)
            before = await play(db, sid, 0, 299)
            not_yet = await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            at = await watch_integrity.update_progress(db, STUDENT, sid, 300)
            challenge = await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            return paused, before, not_yet, at, challenge

        paused, before, not_yet, at, challenge = run_db(scenario)
        assert paused["needs_verification"] is False
        assert before["needs_verification"] is False
        assert not_yet is None
        assert at["needs_verification"] is True
        assert challenge["at_seconds"] == 300
        assert challenge["word"] in watch_integrity.VERIFICATION_WORDS

    def test_wrong_word_changes_nothing(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            await play(db, sid, 0, 300)
            challenge = await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            before = watch_integrity.session_view(await pdb.get_watch_session(db, sid))
            wrong = await watch_integrity.submit_attention_challenge(
                db, STUDENT, sid, challenge["challenge_id"], challenge["word"] + "x"
            )
            same = await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            return challenge, before, wrong, same

        challenge, before, wrong, same = run_db(scenario)
        assert wrong["is_correct"] is False
        assert wrong["session"] == before
        assert same == challenge

    def test_exact_word_advances_verification(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            await play(db, sid, 0, 300)
            challenge = await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            result = await watch_integrity.submit_attention_challenge(
                db, STUDENT, sid, challenge["challenge_id"], f"  {challenge['word'].upper()} "
            )
            with pytest.raises(InvalidState):
                await watch_integrity.submit_attention_challenge(
                    db, STUDENT, sid, challenge["challenge_id"], challenge["word"]
                )
            after = await watch_integrity.get_attention_challenge(db, STUDENT, sid)
            return result, after

        result, after = run_db(scenario)
        assert result["is_correct"] is True
        assert result["session"]["last_verification_seconds"] == 300
        assert result["session"]["verifications_completed"] == 1
        assert after is None

    def test_next_challenge_one_interval_later(self, run_db):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            await play(db, sid, 0, 300)
            await clear_challenge(db, sid)
            mid = await play(db, sid, 300, 599)
            due = await play(db, sid, 599, 600)
            return mid, due

        mid, due = run_db(scenario)
        assert mid["needs_verification"] is False
        assert due["needs_verification"] is True


class TestComprehensionQuiz:

    async def _watch_to_quiz(self, db, video_id):
        session = await watch_integrity.start_watch(db, STUDENT, video_id)
        sid = session["session_id"]
        position = 0
        while position < 1800:
            target = min(position + 300, 1800)
            result = await play(db, sid, position, target)
            position = target
            if result["needs_verification"]:
                await clear_challenge(db, sid)
                result = await watch_integrity.update_progress(db, STUDENT, sid, position)
        return sid, result

    def test_challenge_takes_priority_over_quiz(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            sid = session["session_id"]
            # Reach 1800s of watch time without answering any challenge
            result = await play(db, sid, 0, 1800)
            blocked = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            await clear_challenge(db, sid)
            after = await watch_integrity.update_progress(db, STUDENT, sid, 1800)
            quiz = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            return result, blocked, after, quiz

        result, blocked, after, quiz = run_db(scenario)
        assert result["needs_verification"] is True
        assert result["needs_quiz"] is False
        assert blocked is None
        assert after["needs_quiz"] is True
        assert quiz is not None

    def test_issued_once_with_answers_and_dismissal(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1, duration=3000))[0]
            sid, result = await self._watch_to_quiz(db, video_id)
            quiz = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            graded = await watch_integrity.submit_comprehension_answer(
                db, bank, STUDENT, sid, quiz["questions"][0]["id"], "yes"
            )
            repeat = await watch_integrity.submit_comprehension_answer(
                db, bank, STUDENT, sid, quiz["questions"][0]["id"], "no"
            )
            refetched = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            dismissed = await watch_integrity.dismiss_comprehension_quiz(db, STUDENT, sid)
            gone = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            return result, quiz, graded, repeat, refetched, dismissed, gone

        result, quiz, graded, repeat, refetched, dismissed, gone = run_db(scenario)
        assert result["needs_quiz"] is True
        assert len(quiz["questions"]) == 2
        assert all("correct_answer" not in q for q in quiz["questions"])
        assert quiz["triggered_at_seconds"] == 1800

        assert graded["is_correct"] is True
        assert graded["correct_answer"] == "true"
        assert repeat["already_answered"] is True
        assert repeat["is_correct"] is True

        assert refetched["questions"] == quiz["questions"]
        assert list(refetched["answers"]) == [quiz["questions"][0]["id"]]
        assert refetched["all_answered"] is False

        assert dismissed["quiz_dismissed"] is True
        assert dismissed["questions_answered"] == 1
        assert dismissed["questions_correct"] == 1
        assert gone is None

    def test_free_text_answers_stay_out_of_accuracy(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1, duration=3000))[0]
            sid, _ = await self._watch_to_quiz(db, video_id)
            quiz = await watch_integrity.get_comprehension_quiz(
                db, bank, STUDENT, sid, policy=WatchPolicy(quiz_question_count=3)
            )
            answers = dict(zip([q["id"] for q in quiz["questions"]], ["true", "B", "Objects keep moving"]))
            graded = [
                await watch_integrity.submit_comprehension_answer(db, bank, STUDENT, sid, qid, answer)
                for qid, answer in answers.items()
            ]
            refetched = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            return graded, refetched, await watch_integrity.get_student_watch_stats(db, STUDENT)

        graded, refetched, stats = run_db(scenario)
        assert [g["is_correct"] for g in graded] == [True, True, None]
        assert refetched["answers"][graded[2]["question_id"]]["is_correct"] is None
        assert refetched["all_answered"] is True
        assert stats["questions_answered"] == 3
        assert stats["questions_graded"] == 2
        assert stats["questions_correct"] == 2
        assert stats["question_accuracy"] == 100.0

    def test_not_due_before_threshold(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1))[0]
            session = await watch_integrity.start_watch(db, STUDENT, video_id)
            await play(db, session["session_id"], 0, 200)
            quiz = await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, session["session_id"])
            with pytest.raises(InvalidState):
                await watch_integrity.dismiss_comprehension_quiz(db, STUDENT, session["session_id"])
            return quiz

        assert run_db(scenario) is None

    def test_answer_outside_quiz_is_rejected(self, run_db, bank):
        async def scenario(db):
            video_id = (await seed_videos(db, count=1, duration=3000))[0]
            sid, _ = await self._watch_to_quiz(db, video_id)
            await watch_integrity.get_comprehension_quiz(db, bank, STUDENT, sid)
            with pytest.raises(ValidationError):
                await watch_integrity.submit_comprehension_answer(db, bank, STUDENT, sid, "q01", "A")

        run_db(scenario)


class TestWatchStats:

    def test_student_stats(self, run_db):
        async def scenario(db):
            video_ids = await seed_videos(db, count=2, duration=20)
            for video_id in video_ids:
                session = await watch_integrity.start_watch(db, STUDENT, video_id)
                await play(db, session["session_id"], 0, 20 if video_id == video_ids[0] else 8)
                await watch_integrity.end_watch(db, STUDENT, session["session_id"])
            return (
                await watch_integrity.get_student_watch_stats(db, STUDENT),
                await watch_integrity.get_student_watch_stats(db, STUDENT, video_ids[0]),
                await watch_integrity.get_video_stats(db, video_ids[0]),
            )

        overall, single, video = run_db(scenario)
        assert overall["total_videos"] == 2
        assert overall["completed_videos"] == 1
        assert overall["total_watch_time_seconds"] == 28
        assert overall["average_watch_time_seconds"] == 14.0
        assert single["total_sessions"] == 1
        assert video["unique_students"] == 1
        assert video["completion_rate"] == 100.0
