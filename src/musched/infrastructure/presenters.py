"""Presenting cards: open a document in a viewer or run a card's shell command."""

import logging
import os
import shlex
import subprocess
import sys

from musched.domain.errors import PresentationError
from musched.domain.models import Card, OpenDocument, Presentation, RunCommand

logger = logging.getLogger(__name__)


def presentations_for(card: Card) -> tuple[Presentation, ...]:
    """The card's declared presentations, or its own source file when it declares none."""
    return card.meta.presentations or (OpenDocument(card.path),)


class SystemPresenter:
    """
    Presents cards with local programs and waits for each one to exit.

    Args:
        viewer: Command used to open documents, e.g. "zathura --mode=presentation".
            Defaults to the platform opener (open / startfile / xdg-open).
    """

    def __init__(self, viewer: str | None = None):
        self.viewer = viewer

    def present(self, card: Card) -> None:
        """
        Raises:
            PresentationError: a document is missing or a program could not be started.
        """
        for presentation in presentations_for(card):
            try:
                if isinstance(presentation, RunCommand):
                    self._run_command(card, presentation)
                else:
                    self._open_document(presentation)
            except (OSError, subprocess.SubprocessError) as e:
                raise PresentationError(card.id, e) from e

    def _open_document(self, doc: OpenDocument) -> None:
        if not doc.path.exists():
            raise FileNotFoundError(f"no such document: {doc.path}")
        logger.info(f"Opening {doc.path}")

        if self.viewer:
            subprocess.run([*shlex.split(self.viewer), str(doc.path)], stdin=subprocess.DEVNULL)
        elif sys.platform == "darwin":
            subprocess.run(["open", str(doc.path)])
        elif sys.platform == "win32":
            os.startfile(str(doc.path))  # type: ignore[attr-defined]
        else:
            subprocess.run(["xdg-open", str(doc.path)])

    def _run_command(self, card: Card, cmd: RunCommand) -> None:
        logger.info(f"Running card command for {card.id}")
        env = {**os.environ, "CARD_ID": card.id}
        result = subprocess.run(["/bin/sh", "-c", cmd.command], env=env, cwd=card.path.parent)
        if result.returncode != 0:
            logger.warning(f"Card command for {card.id} exited with status {result.returncode}")
