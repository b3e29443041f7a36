"""Player name matching between the box score and sportsbook feeds."""

import unicodedata

_SUFFIXES = (" jr", " sr", " iii", " ii", " iv")


def strip_diacritics(text: str) -> str:
    """Dončić -> Doncic."""
    nfkd = unicodedata.normalize("NFKD", text)
    return "".join(c for c in nfkd if not unicodedata.combining(c))


def normalize_player_name(name: str) -> str:
    """
    Normalize a player name for matching.

    Handles diacritics, punctuation, case and generational suffixes, so
    "Jaren Jackson Jr." and "jaren jackson" compare equal.
    """
    normalized = strip_diacritics(name.lower().strip())
    normalized = normalized.replace(".", "").replace("'", "").replace("-", " ")
    normalized = " ".join(normalized.split())
    for suffix in _SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)]
            break
    return normalized.strip()


def team_nickname(name: str) -> str:
    """
    Team key for matching across feeds.

    City names differ between feeds ("LA Clippers" vs "Los Angeles
    Clippers") but nicknames are unique in the league.
    """
    words = strip_diacritics(name.casefold()).split()
    return words[-1] if words else ""
