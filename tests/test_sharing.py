from datetime import datetime, timezone

from schemas import BloodRequest
from sharing import share_messages, verification_url


def make_request(**overrides):
    data = {
        "id": "req123",
        "hospitalId": "h1",
        "hospitalName": "Apollo Hospital",
        "hospitalLocality": "Jubilee Hills",
        "hospitalPhone": "9876543210",
        "bloodGroup": "O-",
        "units": 2,
        "urgency": "critical",
        "patientName": "Asha",
        "createdAt": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return BloodRequest.model_validate(data)


def test_verification_url():
    assert verification_url("abc", "https://example.org/") == "https://example.org/?requestId=abc"
    assert verification_url("abc", "") == "/?requestId=abc"


def test_english_message():
    msg = share_messages(make_request(), "https://example.org").english
    assert msg.startswith("*URGENT BLOOD REQUEST*")
    assert "*Apollo Hospital*" in msg
    assert "*Blood Group:* O-" in msg
    assert "*Units Required:* 2" in msg
    assert "Patient Story" not in msg
    assert "https://example.org/?requestId=req123" in msg


def test_story_is_included_when_present():
    msgs = share_messages(make_request(patientStory="Accident victim"), "https://example.org")
    assert "*Patient Story:* Accident victim" in msgs.english
    assert "*मरीज की कहानी:* Accident victim" in msgs.hindi
