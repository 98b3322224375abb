"""User-agent classification for recorded visits.

Browser, OS and device families come from ua-parser. The mobile, bot and
device-type signals are derived from the raw string on top of that, with the
device type resolved in the order Bot > Tablet > Mobile > Desktop.
"""

import logging

import ua_parser
from pydantic import BaseModel, ConfigDict

from shortlinks.enums import DeviceType

__all__ = ["ParsedUserAgent", "parse_user_agent", "is_bot", "is_mobile", "device_type"]

logger = logging.getLogger("shortlinks")

MOBILE_MARKERS = ("mobile", "android", "iphone", "ipad", "windows phone")
MOBILE_DEVICE_FAMILIES = ("iphone", "android")
BOT_MARKERS = ("bot", "crawler", "spider", "scraper", "curl", "wget", "python", "java/")
TABLET_MARKERS = ("tablet", "ipad")


class ParsedUserAgent(BaseModel):
    model_config = ConfigDict(frozen=True)

    browser: str = "Unknown"
    browser_version: str = ""
    operating_system: str = "Unknown"
    os_version: str = ""
    device_type: DeviceType = DeviceType.UNKNOWN
    is_mobile: bool = False
    is_bot: bool = False

    @classmethod
    def unknown(cls) -> "ParsedUserAgent":
        return cls()


def is_mobile(user_agent: str, device_family: str | None = None) -> bool:
    ua = user_agent.lower()
    if any(marker in ua for marker in MOBILE_MARKERS):
        return True
    return (device_family or "").lower() in MOBILE_DEVICE_FAMILIES


def is_bot(user_agent: str) -> bool:
    ua = user_agent.lower()
    return any(marker in ua for marker in BOT_MARKERS)


def device_type(user_agent: str, mobile: bool) -> DeviceType:
    if is_bot(user_agent):
        return DeviceType.BOT
    ua = user_agent.lower()
    if any(marker in ua for marker in TABLET_MARKERS):
        return DeviceType.TABLET
    if mobile:
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def parse_user_agent(user_agent: str | None) -> ParsedUserAgent:
    if not user_agent:
        return ParsedUserAgent.unknown()

    try:
        result = ua_parser.parse(user_agent)
    except Exception as exc:  # parser internals are not part of our contract
        logger.warning(f"User-agent parsing failed: {exc}")
        return ParsedUserAgent.unknown()

    browser = result.user_agent
    os = result.os
    device_family = result.device.family if result.device else None
    mobile = is_mobile(user_agent, device_family)

    return ParsedUserAgent(
        browser=browser.family if browser else "Unknown",
        browser_version=(browser.major or "") if browser else "",
        operating_system=os.family if os else "Unknown",
        os_version=(os.major or "") if os else "",
        device_type=device_type(user_agent, mobile),
        is_mobile=mobile,
        is_bot=is_bot(user_agent),
    )
