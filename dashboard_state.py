import enum
import itertools
import logging
from typing import List, Optional

from categories import CATEGORIES, Category
from models import AnalysisReport, ConversationTurn

logger = logging.getLogger(__name__)

_tokens = itertools.count(1)


class Phase(enum.Enum):
    NO_REPORT = "no_report"
    LOADING = "loading"
    REPORT = "report"


class InvalidStateError(RuntimeError):
    pass


class DashboardState:
    """
    Report lifecycle of the dashboard view: NO_REPORT -> LOADING -> REPORT.

    Every report and follow-up request is issued a token. A response is only
    applied if its token is still the current one, so answers that arrive after
    a category change, a reset or a newer request are dropped.
    """

    def __init__(self, category: Category = CATEGORIES[0]):
        self.category = category
        self.phase = Phase.NO_REPORT
        self.report: Optional[AnalysisReport] = None
        self.turns: List[ConversationTurn] = []
        self._report_token: Optional[int] = None
        self._follow_up_token: Optional[int] = None
        self._follow_up_report: Optional[AnalysisReport] = None

    @property
    def is_loading(self) -> bool:
        return self.phase is Phase.LOADING

    @property
    def follow_up_pending(self) -> bool:
        return self._follow_up_token is not None

    def select_category(self, category: Category) -> bool:
        if category.id == self.category.id:
            return False
        self.category = category
        self._clear()
        return True

    def begin_report(self) -> int:
        token = next(_tokens)
        self.report = None
        self.turns = []
        self._follow_up_token = None
        self._report_token = token
        self.phase = Phase.LOADING
        return token

    def finish_report(self, token: int, report: AnalysisReport) -> bool:
        if token != self._report_token:
            logger.info("Discarding stale report for %s", report.category_id)
            return False
        self._report_token = None
        self.report = report
        self.turns = []
        self.phase = Phase.REPORT
        return True

    def reset(self) -> None:
        self._clear()

    def begin_follow_up(self) -> int:
        if self.phase is not Phase.REPORT:
            raise InvalidStateError(f"Follow-up questions need a report, dashboard is in {self.phase.value}")
        token = next(_tokens)
        self._follow_up_token = token
        self._follow_up_report = self.report
        return token

    def finish_follow_up(self, token: int, question: str, answer: str) -> bool:
        if token != self._follow_up_token or self._follow_up_report is not self.report:
            logger.info("Discarding stale follow-up answer")
            return False
        self._follow_up_token = None
        self.turns.append(ConversationTurn.create(question, answer))
        return True

    def abandon_report(self, token: int) -> None:
        """Releases a report request that ended without a result (e.g. the script run was interrupted)."""
        if token == self._report_token:
            logger.info("Report request abandoned")
            self._report_token = None
            self.phase = Phase.NO_REPORT

    def abandon_follow_up(self, token: int) -> None:
        if token == self._follow_up_token:
            logger.info("Follow-up request abandoned")
            self._follow_up_token = None
            self._follow_up_report = None

    def _clear(self) -> None:
        self.phase = Phase.NO_REPORT
        self.report = None
        self.turns = []
        self._report_token = None
        self._follow_up_token = None
        self._follow_up_report = None
