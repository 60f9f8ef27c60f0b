from contextlib import contextmanager

from widgets.events import content_moved, import_failure, import_skip_existing, import_success


class ImportReporter:
    """Write one line per import event to a management command's stdout."""

    def __init__(self, command):
        self.command = command

    def skipped(self, sender, widget_id, **kwargs):
        self.command.stdout.write(
            f"Skipping already-imported widget {widget_id} (to update, call with --update)."
        )

    def succeeded(self, sender, widget_id, update=False, dry_run=False, **kwargs):
        message = f"Updated widget {widget_id}." if update else f"Inserted widget {widget_id}."
        if dry_run:
            message += " (DRY RUN)"
        self.command.stdout.write(self.command.style.SUCCESS(message))

    def failed(self, sender, widget_id, exception=None, **kwargs):
        self.command.stdout.write(
            self.command.style.WARNING(f"Failed to import {widget_id}: {exception}")
        )

    def moved(self, sender, type="success", message="", **kwargs):
        style = self.command.style.SUCCESS if type == "success" else self.command.style.WARNING
        self.command.stdout.write(style(message))

    @contextmanager
    def connected(self):
        pairs = [
            (import_skip_existing, self.skipped),
            (import_success, self.succeeded),
            (import_failure, self.failed),
            (content_moved, self.moved),
        ]
        for signal, receiver in pairs:
            signal.connect(receiver, weak=False)
        try:
            yield self
        finally:
            for signal, receiver in pairs:
                signal.disconnect(receiver)

    def write_summary(self, result):
        self.command.stdout.write("")
        self.command.stdout.write(f"Skipped: {result.skipped}")
        self.command.stdout.write(f"Updated: {result.updated}")
        self.command.stdout.write(f"Inserted: {result.inserted}")
        self.command.stdout.write(f"Failed: {result.failed}")
