"""VLC feedback provider (process and HTTP mocked) and the feedback channel."""

import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from reelrank.playback import FeedbackChannel, FeedbackError, FeedbackResult, Outcome, VlcFeedback, VlcProcess


# ============================================================================
# FIXTURES
# ============================================================================

class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class FakeHttp:
    """Replays status payloads; an exception instance in the script is raised."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def get(self, url, auth=None, timeout=None):
        self.calls.append((url, auth, timeout))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return FakeResponse(item)


def playing(name):
    return {"state": "playing", "information": {"category": {"meta": {"filename": name}}}}


@pytest.fixture
def popen():
    with patch("reelrank.playback.subprocess.Popen") as mock_popen:
        proc = MagicMock()
        proc.poll.return_value = None
        mock_popen.return_value = proc
        yield mock_popen


def provider(script, **kwargs):
    kwargs.setdefault("poll_interval", 0.0)
    kwargs.setdefault("startup_timeout", 5.0)
    return VlcFeedback(session=FakeHttp(script), **kwargs)


# ============================================================================
# RULE: stop keeps, pause rejects
# ============================================================================

def test_stop_means_positive(popen, tmp_path):
    clip = tmp_path / "clip.mp4"
    fb = provider([{"state": "playing"}, playing("clip.mp4"), playing("clip.mp4"), {"state": "stopped"}])
    result = fb.request(clip)
    assert result == FeedbackResult(clip, Outcome.POSITIVE)
    assert result.is_decision
    popen.return_value.kill.assert_called_once()


def test_pause_means_negative(popen, tmp_path):
    fb = provider([playing("clip.mp4"), {"state": "paused"}])
    assert fb.request(tmp_path / "clip.mp4").outcome is Outcome.NEGATIVE


def test_vlc_started_with_http_interface(popen, tmp_path):
    fb = provider([playing("clip.mp4"), {"state": "stopped"}], executable="/opt/vlc", fullscreen=True)
    fb.request(tmp_path / "clip.mp4")
    cmd = popen.call_args[0][0]
    assert cmd[0] == "/opt/vlc"
    assert cmd[1:3] == ["-I", "http"]
    assert "--fullscreen" in cmd
    assert cmd[-1] == str(tmp_path / "clip.mp4")
    url, auth, _ = fb.session.calls[0]
    assert url.endswith("/requests/status.json")
    assert auth[0] == "" and auth[1] == cmd[cmd.index("--http-password") + 1]


def test_connection_errors_during_startup_are_retried(popen, tmp_path):
    fb = provider([requests.ConnectionError("refused"), playing("clip.mp4"), {"state": "stopped"}])
    assert fb.request(tmp_path / "clip.mp4").outcome is Outcome.POSITIVE


# ============================================================================
# RULE: failures become error or timeout results, never exceptions
# ============================================================================

def test_filename_mismatch_is_error(popen, tmp_path):
    result = provider([playing("other.mp4")]).request(tmp_path / "clip.mp4")
    assert result.outcome is Outcome.ERROR
    assert "mismatch" in result.message
    assert not result.is_decision


def test_startup_timeout(popen, tmp_path):
    result = provider([{"state": "playing"}], startup_timeout=0.0).request(tmp_path / "clip.mp4")
    assert result.outcome is Outcome.TIMEOUT


def test_decision_timeout(popen, tmp_path):
    fb = provider([playing("clip.mp4")], decision_timeout=0.05, poll_interval=0.005)
    assert fb.request(tmp_path / "clip.mp4").outcome is Outcome.TIMEOUT


def test_lost_connection_after_start_is_error(popen, tmp_path):
    fb = provider([playing("clip.mp4"), requests.ConnectionError("gone")])
    assert fb.request(tmp_path / "clip.mp4").outcome is Outcome.ERROR


def test_missing_executable_is_error(tmp_path):
    with patch("reelrank.playback.subprocess.Popen", side_effect=FileNotFoundError("vlc")):
        result = provider([playing("clip.mp4")]).request(tmp_path / "clip.mp4")
    assert result.outcome is Outcome.ERROR


def test_player_exiting_early_is_error(popen, tmp_path):
    popen.return_value.poll.return_value = 0
    result = provider([{"state": "playing"}]).request(tmp_path / "clip.mp4")
    assert result.outcome is Outcome.ERROR
    popen.return_value.kill.assert_not_called()


def test_cancel_interrupts_waiting(popen, tmp_path):
    fb = provider([{"state": "playing"}], poll_interval=0.01, startup_timeout=60.0)
    fb.cancel()
    result = fb.request(tmp_path / "clip.mp4")
    assert result.outcome is Outcome.ERROR
    assert result.message == "cancelled"


def test_reset_after_cancel_accepts_requests(popen, tmp_path):
    fb = provider([playing("clip.mp4"), {"state": "stopped"}])
    fb.cancel()
    fb.reset()
    assert fb.request(tmp_path / "clip.mp4").outcome is Outcome.POSITIVE


def test_provider_serves_consecutive_channels(popen, tmp_path):
    """Closing a channel cancels the provider; the next channel still gets answers."""
    clip = tmp_path / "clip.mp4"
    fb = provider([playing("clip.mp4"), {"state": "stopped"}, playing("clip.mp4"), {"state": "paused"}])
    outcomes = []
    for _ in range(2):
        with FeedbackChannel(fb) as channel:
            channel.submit(clip)
            outcomes.append(channel.receive(timeout=5).outcome)
    assert outcomes == [Outcome.POSITIVE, Outcome.NEGATIVE]


def test_status_wraps_bad_json(tmp_path):
    http = MagicMock()
    http.get.return_value.json.side_effect = ValueError("not json")
    proc = VlcProcess(tmp_path / "clip.mp4", session=http)
    with pytest.raises(FeedbackError) as excinfo:
        proc.status()
    assert "VLC not responding" in str(excinfo.value)


def test_outcome_labels():
    assert Outcome.POSITIVE.label.value == "positive"
    assert Outcome.NEGATIVE.label.value == "negative"
    assert Outcome.ERROR.label is None and Outcome.TIMEOUT.label is None


# ============================================================================
# Feedback channel
# ============================================================================

class EchoProvider:
    def __init__(self):
        self.cancelled = threading.Event()

    def request(self, path):
        if path.name == "boom.mp4":
            raise RuntimeError("exploded")
        return FeedbackResult(path, Outcome.POSITIVE)

    def cancel(self):
        self.cancelled.set()

    def reset(self):
        self.cancelled.clear()


def test_channel_delivers_results_in_order():
    provider_ = EchoProvider()
    with FeedbackChannel(provider_) as channel:
        for name in ("a.mp4", "boom.mp4", "c.mp4"):
            channel.submit(Path(name))
        results = [channel.receive(timeout=5) for _ in range(3)]
    assert [r.path.name for r in results] == ["a.mp4", "boom.mp4", "c.mp4"]
    assert [r.outcome for r in results] == [Outcome.POSITIVE, Outcome.ERROR, Outcome.POSITIVE]
    assert "exploded" in results[1].message
    assert provider_.cancelled.is_set()


def test_channel_receive_times_out():
    with FeedbackChannel(EchoProvider()) as channel:
        assert channel.receive(timeout=0.01) is None
