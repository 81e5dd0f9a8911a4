from .organization import Organization
from .setting import Setting
from .template import Template, CriteriaGroup, Criterion
from .call import Call
from .session import GradingSession
from .score import Score
from .queue_item import QueueItem
from .report import Report
from .audit import SessionAuditLog
# base and mixins are imported by the above as needed
