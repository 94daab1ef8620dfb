"""Name normalization utilities for team name matching.

Handles common variations across providers:
- Accents: "San José State" → "san jose state"
- Punctuation: "Miami (OH)" → "miami oh", "Hawai'i" → "hawaii"
- Ampersands: "Texas A&M" → "texas a m" (slug: texas-a-m)
- Abbreviations: "Appalachian St." → "appalachian state"
- Filler words: "University of Alabama" → "alabama"
- Case and extra spaces: "OHIO  STATE" → "ohio state"

"state" is deliberately NOT a stop word: it is the most common real
difference between two otherwise identical program names.
"""
import re
import unicodedata
from typing import Iterable, List, Optional


# Institutional filler removed before comparison
STOP_WORDS = {
    'university', 'univ', 'college', 'the', 'of', 'football',
}

# Characters dropped without leaving a gap ("Hawai'i", "St.", "U.S.")
_JOINING_PUNCTUATION = re.compile(r"['’‘`.]")

# Everything else that is not a word character, whitespace or hyphen
_SEPARATING_PUNCTUATION = re.compile(r"[^\w\s-]|_")

# Hyphens that do not sit between two word characters
_LOOSE_HYPHENS = re.compile(r"(?<!\w)-|-(?!\w)")

# Multi-word and frequent mascots seen in provider strings. Mascots of teams
# in the canonical index are added to this at resolve time.
KNOWN_MASCOTS = {
    'crimson tide', 'blue devils', 'fighting irish', 'nittany lions',
    'fighting illini', 'sun devils', 'golden hurricane', 'demon deacons',
    'scarlet knights', 'horned frogs', 'red raiders', 'yellow jackets',
    'tar heels', 'golden gophers', 'rainbow warriors', 'mean green',
    'green wave', 'golden flashes', 'red wolves', 'blue raiders',
    'golden eagles', 'ragin cajuns', 'black knights', 'thundering herd',
    'golden bears', 'black bears', 'fighting hawks', 'blue hens',
    'golden panthers', 'big green', 'red hawks', 'redhawks', 'warhawks',
    'wildcats', 'huskies', 'jayhawks', 'cavaliers', 'bearkats', 'broncos',
    'zips', 'bulldogs', 'tigers', 'eagles', 'hawks', 'lions', 'bears',
    'wolves', 'raiders', 'pirates', 'knights', 'crusaders', 'saints',
    'rebels', 'aggies', 'cowboys', 'cougars', 'trojans', 'mustangs',
    'seminoles', 'buckeyes', 'cyclones', 'beavers', 'spartans', 'wolfpack',
    'hurricanes', 'panthers', 'mountaineers', 'longhorns', 'sooners',
    'gators', 'volunteers', 'razorbacks', 'gamecocks', 'commodores',
}


def fold_ascii(text: str) -> str:
    """
    Remove accents and diacritics from unicode characters.

    Converts 'é' → 'e', 'ñ' → 'n', etc.

    Args:
        text: The text to fold

    Returns:
        Text with combining marks removed
    """
    normalized = unicodedata.normalize('NFKD', text)
    return ''.join(
        c for c in normalized
        if not unicodedata.combining(c)
    )


def _clean(name: str) -> str:
    """Fold, lowercase and strip punctuation, keeping internal hyphens."""
    name = fold_ascii(name).lower()
    name = name.replace('&', ' ')
    name = _JOINING_PUNCTUATION.sub('', name)
    name = _SEPARATING_PUNCTUATION.sub(' ', name)
    name = _LOOSE_HYPHENS.sub(' ', name)
    return ' '.join(name.split())


def normalize(name: str) -> str:
    """
    Normalize a team name for comparison by removing variations.

    Steps:
    1. Fold unicode to base Latin letters
    2. Convert to lowercase, turn '&' into a token break
    3. Remove punctuation (but keep internal hyphens)
    4. Expand a non-leading "st" to "state"
    5. Remove institutional stop words
    6. Collapse whitespace

    Args:
        name: The name to normalize

    Returns:
        Normalized name string

    Examples:
        >>> normalize("Ole Miss Rebels")
        'ole miss rebels'
        >>> normalize("San José State")
        'san jose state'
        >>> normalize("Texas A&M")
        'texas a m'
        >>> normalize("University of Louisiana-Monroe")
        'louisiana-monroe'
        >>> normalize("Appalachian St.")
        'appalachian state'
    """
    if not name:
        return ""

    words: List[str] = []
    for position, word in enumerate(_clean(name).split()):
        if word == 'st' and position > 0:
            word = 'state'
        if word in STOP_WORDS:
            continue
        words.append(word)

    return ' '.join(words)


def slugify(name: str) -> str:
    """
    Normalize a name and join it with hyphens for index-key use.

    Examples:
        >>> slugify("Ohio State Buckeyes")
        'ohio-state-buckeyes'
        >>> slugify("Texas A&M")
        'texas-a-m'
    """
    slug = normalize(name).replace(' ', '-')
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def id_slug(name: str) -> str:
    """
    Literal slug of a name without stop-word removal or abbreviation expansion.

    Used to compare raw provider strings against canonical ids and denylist
    entries that keep filler words (e.g. 'mississippi-college').
    """
    if not name:
        return ""
    slug = _clean(name).replace(' ', '-')
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def tokens(name: str) -> List[str]:
    """Normalized tokens of a name, splitting on whitespace and hyphens."""
    return [t for t in re.split(r'[\s-]+', normalize(name)) if t]


def slug_tokens(slug: str) -> List[str]:
    """Tokens of an already-slugged identifier."""
    return [t for t in slug.split('-') if t]


def strip_mascot(normalized: str, mascots: Iterable[str]) -> Optional[str]:
    """
    Remove a known mascot suffix from an already-normalized name.

    Longer mascots are tried first so "golden eagles" wins over "eagles".

    Returns:
        The remaining institution name, or None when no mascot suffix matched
        or nothing would be left.
    """
    for mascot in sorted(set(mascots), key=len, reverse=True):
        if not mascot:
            continue
        suffix = ' ' + mascot
        if normalized.endswith(suffix):
            remainder = normalized[:-len(suffix)].strip()
            if remainder:
                return remainder
    return None


def strip_last_token(normalized: str) -> Optional[str]:
    """
    Drop the trailing token of a normalized name ("akron zips" → "akron").

    Returns None for single-token names.
    """
    parts = normalized.split()
    if len(parts) < 2:
        return None
    return ' '.join(parts[:-1])
