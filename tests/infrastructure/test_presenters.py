from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from musched.domain.errors import PresentationError
from musched.domain.models import Card, CardMeta, OpenDocument, ReviewState, RunCommand
from musched.infrastructure.presenters import SystemPresenter, presentations_for


def _card(path: Path, *presentations, now) -> Card:
    return Card(
        id="algebra/groups.card",
        path=path,
        meta=CardMeta(tags=("Algebra",), priority=3, presentations=presentations),
        review=ReviewState.new(now),
    )


@pytest.fixture
def card_file(tmp_path):
    p = tmp_path / "groups.card"
    p.write_text("% tags: Algebra\n% priority: 3\n")
    return p


def test_default_presentation_is_the_card_file(card_file, now):
    assert presentations_for(_card(card_file, now=now)) == (OpenDocument(card_file),)


@patch("musched.infrastructure.presenters.subprocess.run")
def test_viewer_command_opens_document(mock_run, card_file, now):
    SystemPresenter("zathura --mode=presentation").present(_card(card_file, now=now))

    args = mock_run.call_args[0][0]
    assert args == ["zathura", "--mode=presentation", str(card_file)]


@patch("musched.infrastructure.presenters.sys.platform", "linux")
@patch("musched.infrastructure.presenters.subprocess.run")
def test_platform_opener(mock_run, card_file, now):
    SystemPresenter().present(_card(card_file, now=now))
    mock_run.assert_called_once_with(["xdg-open", str(card_file)])


@patch("musched.infrastructure.presenters.subprocess.run")
def test_run_command_sets_card_id(mock_run, card_file, now):
    mock_run.return_value = MagicMock(returncode=0)
    SystemPresenter().present(_card(card_file, RunCommand("make view"), now=now))

    args, kwargs = mock_run.call_args
    assert args[0] == ["/bin/sh", "-c", "make view"]
    assert kwargs["env"]["CARD_ID"] == "algebra/groups.card"
    assert kwargs["cwd"] == card_file.parent


@patch("musched.infrastructure.presenters.subprocess.run")
def test_presentations_run_in_order(mock_run, card_file, tmp_path, now):
    mock_run.return_value = MagicMock(returncode=0)
    pdf = tmp_path / "groups.pdf"
    pdf.write_bytes(b"%PDF")

    SystemPresenter("viewer").present(_card(card_file, OpenDocument(pdf), RunCommand("true"), now=now))

    assert [c[0][0][0] for c in mock_run.call_args_list] == ["viewer", "/bin/sh"]


def test_missing_document_raises(tmp_path, now):
    card = _card(tmp_path / "groups.card", OpenDocument(tmp_path / "missing.pdf"), now=now)

    with pytest.raises(PresentationError) as exc:
        SystemPresenter("viewer").present(card)
    assert exc.value.card_id == "algebra/groups.card"


@patch("musched.infrastructure.presenters.subprocess.run", side_effect=FileNotFoundError("no zathura"))
def test_viewer_not_found_raises(mock_run, card_file, now):
    with pytest.raises(PresentationError, match="no zathura"):
        SystemPresenter("zathura").present(_card(card_file, now=now))
