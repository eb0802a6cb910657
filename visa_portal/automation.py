"""
Automation trigger for case lifecycle events.

The case service calls AutomationTrigger.on_case_event once per created case
and once per actual status change, after the change was committed. Rule
failures are logged and never reach the caller.

The default runner reads Automation rows from the database:

    trigger_type: case_created | status_change
    trigger_conditions: {"status": "approved"}   (status_change only, optional)
    actions: [{"type": "add_note", "content": "..."},
              {"type": "set_priority", "priority": "high"}]
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from .db.models import Automation, Case, CaseEvent, CaseNote, Priority

logger = logging.getLogger(__name__)


class RuleRunner(Protocol):
    """Collaborator that owns rule matching and execution"""

    def run(self, event_type: CaseEvent, case: Case, context: Dict[str, Any]) -> None: ...


class AutomationTrigger:
    """Isolates case mutations from automation failures"""

    def __init__(self, runner: Optional[RuleRunner] = None):
        self.runner = runner

    def on_case_event(self, event_type: CaseEvent, case: Case, context: Optional[Dict[str, Any]] = None) -> None:
        if self.runner is None:
            return
        context = context or {}
        try:
            self.runner.run(CaseEvent(event_type), case, context)
        except Exception:
            logger.exception(f"[automation] {event_type} handler failed for case {case.id}")


# =============================================================================
# DEFAULT RULE RUNNER
# =============================================================================

ActionHandler = Callable[[Session, Case, Dict[str, Any], Dict[str, Any]], None]


def _add_note(db: Session, case: Case, action: Dict[str, Any], context: Dict[str, Any]) -> None:
    content = (action.get("content") or "").strip()
    if not content:
        raise ValueError("add_note action requires content")
    case.notes.append(CaseNote(
        content=content,
        created_by_id=context.get("actor_id"),
        created_at=datetime.utcnow(),
    ))


def _set_priority(db: Session, case: Case, action: Dict[str, Any], context: Dict[str, Any]) -> None:
    case.priority = Priority(action.get("priority"))


DEFAULT_ACTIONS: Dict[str, ActionHandler] = {
    "add_note": _add_note,
    "set_priority": _set_priority,
}


class RuleStoreRunner:
    """Executes active Automation rows whose trigger matches the event"""

    def __init__(self, db: Session, actions: Optional[Dict[str, ActionHandler]] = None):
        self.db = db
        self.actions = dict(DEFAULT_ACTIONS if actions is None else actions)

    def matching_rules(self, event_type: CaseEvent, context: Dict[str, Any]) -> List[Automation]:
        rules = (
            self.db.query(Automation)
            .filter(Automation.is_active.is_(True), Automation.trigger_type == event_type)
            .order_by(Automation.created_at, Automation.id)
            .all()
        )
        if event_type != CaseEvent.STATUS_CHANGE:
            return rules

        matched = []
        for rule in rules:
            wanted = (rule.trigger_conditions or {}).get("status")
            if wanted and wanted != context.get("new_status"):
                continue
            matched.append(rule)
        return matched

    def run(self, event_type: CaseEvent, case: Case, context: Dict[str, Any]) -> None:
        for rule in self.matching_rules(event_type, context):
            try:
                for action in rule.actions or []:
                    handler = self.actions.get(action.get("type"))
                    if handler is None:
                        logger.warning(f"[automation] Rule {rule.name!r}: unknown action {action.get('type')!r}, skipped")
                        continue
                    handler(self.db, case, action, context)
                self.db.commit()
                logger.info(f"[automation] Rule {rule.name!r} executed on case {case.id}")
            except Exception:
                self.db.rollback()
                logger.exception(f"[automation] Rule {rule.name!r} failed on case {case.id}")


def get_automation_trigger(db: Session) -> AutomationTrigger:
    """Trigger backed by the stored automation rules"""
    return AutomationTrigger(RuleStoreRunner(db))
