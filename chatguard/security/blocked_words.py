"""
Blocked username terms.

Substring match after lowercasing and folding common digit/symbol
substitutions, so "sh1t" and "5hit" are caught by "shit".
"""

_LEET_TABLE = str.maketrans({"0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "@": "a", "$": "s"})

BLOCKED_TERMS = (
    # Slurs
    "nigger", "nigga", "chink", "gook", "spic", "wetback", "beaner", "kike",
    "raghead", "towelhead", "coon", "darkie", "redskin", "squaw", "zipperhead",
    "faggot", "fag", "dyke", "tranny",
    # Sexual / vulgar
    "fuck", "fuk", "fck", "phuck", "phuk", "shit", "cunt", "cock", "dick",
    "pussy", "penis", "vagina", "jizz", "whore", "slut", "porn", "rape",
    "molest", "pedo", "paedo",
    # Hate / violence
    "nazi", "hitler", "holocaust", "kkk", "jihad", "terrorist", "genocide", "killall",
    # Abusive
    "retard", "bitch", "bastard", "asshole", "dumbass",
    # Impersonation / reserved
    "admin", "moderator", "system", "support", "deleted", "anonymous", "guest_",
)


def normalize(text: str) -> str:
    return text.lower().translate(_LEET_TABLE)


def contains_blocked_term(text: str) -> bool:
    lowered = text.lower()
    folded = normalize(text)
    return any(term in lowered or term in folded for term in BLOCKED_TERMS)
