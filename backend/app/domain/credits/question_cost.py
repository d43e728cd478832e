"""
Follow-up question pricing.

Pure rules, no I/O. The caller debits only when the cost is > 0 and bumps
the user's lifetime question counter only for non-cached answers.
"""

from backend.app.core.config import settings


class QuestionCostPolicy:

    @staticmethod
    def cost_of(session_question_index: int, user_total_questions_asked: int) -> int:
        """
        Credits charged for the next follow-up question.

        The first question of a session is free. After that, every Nth question
        of the user's lifetime (N = free_question_interval, 5 by default) is free.
        The session rule wins when both apply.

        Args:
            session_question_index: 0-based position of the question in the session
            user_total_questions_asked: Lifetime non-cached questions before this one

        Returns:
            0 or the configured follow-up cost
        """
        if session_question_index == 0:
            return 0
        if (user_total_questions_asked + 1) % settings.free_question_interval == 0:
            return 0
        return settings.follow_up_cost
