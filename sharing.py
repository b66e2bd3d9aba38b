"""
Ready-to-forward appeal texts for a blood request (English and Hindi).
"""
import os
from typing import Optional

from pydantic import BaseModel

from schemas import BloodRequest

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")


class ShareMessages(BaseModel):
    verification_url: str
    english: str
    hindi: str


def verification_url(request_id: str, base_url: Optional[str] = None) -> str:
    base = (PUBLIC_BASE_URL if base_url is None else base_url).rstrip("/")
    return f"{base}/?requestId={request_id}"


def share_messages(request: BloodRequest, base_url: Optional[str] = None) -> ShareMessages:
    url = verification_url(request.id, base_url)
    story_en = f"*Patient Story:* {request.patient_story}\n" if request.patient_story else ""
    story_hi = f"*मरीज की कहानी:* {request.patient_story}\n" if request.patient_story else ""

    english = (
        "*URGENT BLOOD REQUEST*\n\n"
        f"A patient at *{request.hospital_name}* is in critical need of blood.\n\n"
        f"*Blood Group:* {request.blood_group}\n"
        f"*Units Required:* {request.units}\n"
        f"*Urgency:* {request.urgency}\n"
        f"{story_en}\n"
        "Please help save a life. Your donation is invaluable.\n\n"
        "*Verify this request and check its status at:*\n"
        f"{url}\n\n"
        "Thank you for your support!"
    )
    hindi = (
        "*तत्काल रक्त की आवश्यकता*\n\n"
        f"*{request.hospital_name}* में एक मरीज को तत्काल रक्त की आवश्यकता है।\n\n"
        f"*ब्लड ग्रुप:* {request.blood_group}\n"
        f"*यूनिट की आवश्यकता:* {request.units}\n"
        f"*अविलंबता:* {request.urgency}\n"
        f"{story_hi}\n"
        "कृपया एक जीवन बचाने में मदद करें। आपका रक्तदान अमूल्य है।\n\n"
        "*इस अनुरोध को सत्यापित करें और इसकी स्थिति जांचें:*\n"
        f"{url}\n\n"
        "आपके सहयोग के लिए धन्यवाद!"
    )
    return ShareMessages(verification_url=url, english=english, hindi=hindi)
