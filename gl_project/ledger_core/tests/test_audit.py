from ledger_core.exceptions import ImmutableRecordError
from ledger_core.models import AuditLog
from ledger_core.services import (create_draft_journal, post_journal,
                                  update_account)

from .base import LedgerTestCase


class AuditTrailTests(LedgerTestCase):

    def logs_for(self, instance):
        return AuditLog.objects.filter(
            object_type=instance._meta.db_table, object_id=str(instance.pk)
        ).order_by("id")

    def test_insert_and_update_are_recorded(self):
        update_account(self.cash.pk, name="Main bank")

        logs = list(self.logs_for(self.cash))
        self.assertEqual([log.action for log in logs], ["insert", "update"])
        update = logs[1]
        self.assertEqual(update.changed_fields, ["name"])
        self.assertEqual(update.before["name"], "Cash at bank")
        self.assertEqual(update.after["name"], "Main bank")
        self.assertEqual(update.actor_id, "tester")

    def test_noop_update_is_skipped(self):
        self.cash.save()
        self.assertEqual(self.logs_for(self.cash).count(), 1)

    def test_post_event_is_logged_once(self):
        je = create_draft_journal(
            date=self.day(3),
            lines=self.lines((self.cash, 10, 0), (self.revenue, 0, 10)),
        )
        post_journal(je.pk)
        post_journal(je.pk)

        self.assertEqual(self.logs_for(je).filter(action="post").count(), 1)

    def test_audit_rows_are_append_only(self):
        log = self.logs_for(self.cash).first()
        log.action = "delete"
        with self.assertRaises(ImmutableRecordError):
            log.save()
        with self.assertRaises(ImmutableRecordError):
            log.delete()
