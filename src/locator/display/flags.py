from __future__ import annotations

from typing import Callable, Optional

from locator.utils.types import LocationInfo

DisplayLookup = Callable[[str], Optional[str]]

# country / region name -> flag emoji
COUNTRY_FLAGS: dict[str, str] = {
    "Afghanistan": "🇦🇫",
    "Albania": "🇦🇱",
    "Algeria": "🇩🇿",
    "Argentina": "🇦🇷",
    "Australia": "🇦🇺",
    "Austria": "🇦🇹",
    "Bangladesh": "🇧🇩",
    "Belgium": "🇧🇪",
    "Brazil": "🇧🇷",
    "Canada": "🇨🇦",
    "Chile": "🇨🇱",
    "China": "🇨🇳",
    "Colombia": "🇨🇴",
    "Czech Republic": "🇨🇿",
    "Denmark": "🇩🇰",
    "Egypt": "🇪🇬",
    "Europe": "🇪🇺",
    "Finland": "🇫🇮",
    "France": "🇫🇷",
    "Germany": "🇩🇪",
    "Greece": "🇬🇷",
    "Hong Kong": "🇭🇰",
    "Hungary": "🇭🇺",
    "Iceland": "🇮🇸",
    "India": "🇮🇳",
    "Indonesia": "🇮🇩",
    "Ireland": "🇮🇪",
    "Israel": "🇮🇱",
    "Italy": "🇮🇹",
    "Japan": "🇯🇵",
    "Kenya": "🇰🇪",
    "Korea": "🇰🇷",
    "Malaysia": "🇲🇾",
    "Mexico": "🇲🇽",
    "Morocco": "🇲🇦",
    "Netherlands": "🇳🇱",
    "New Zealand": "🇳🇿",
    "Nigeria": "🇳🇬",
    "Norway": "🇳🇴",
    "Pakistan": "🇵🇰",
    "Peru": "🇵🇪",
    "Philippines": "🇵🇭",
    "Poland": "🇵🇱",
    "Portugal": "🇵🇹",
    "Romania": "🇷🇴",
    "Russia": "🇷🇺",
    "Saudi Arabia": "🇸🇦",
    "Singapore": "🇸🇬",
    "South Africa": "🇿🇦",
    "South Korea": "🇰🇷",
    "Spain": "🇪🇸",
    "Sweden": "🇸🇪",
    "Switzerland": "🇨🇭",
    "Taiwan": "🇹🇼",
    "Thailand": "🇹🇭",
    "Turkey": "🇹🇷",
    "Ukraine": "🇺🇦",
    "United Arab Emirates": "🇦🇪",
    "United Kingdom": "🇬🇧",
    "United States": "🇺🇸",
    "Vietnam": "🇻🇳",
}

_FLAGS_LOWER = {name.lower(): flag for name, flag in COUNTRY_FLAGS.items()}


def country_flag(name: Optional[str]) -> Optional[str]:
    """Case-insensitive, whitespace-tolerant flag lookup."""
    if not name:
        return None
    return _FLAGS_LOWER.get(name.strip().lower())


def location_info(value: Optional[str], lookup: DisplayLookup = country_flag) -> LocationInfo:
    """Raw value -> LocationInfo; display falls back to the raw value."""
    if value is None:
        return LocationInfo(value=None, display=None)
    return LocationInfo(value=value, display=lookup(value) or value)
