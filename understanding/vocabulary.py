"""
Static vocabulary tables for local intent classification.

INTENT_PATTERNS - intent tag -> keyword patterns (substring containment).
                  Registration order matters: on equal scores the earlier
                  intent wins.
TYPO_MAP        - misspelled token -> canonical token.
SLANG_MAP       - slang phrase -> canonical phrase (longest phrase first).
ACTIONS_BY_INTENT - intent -> closed action vocabulary; canonical_action()
                  maps free-form action words onto it.

All tables are read-only views built once at import time.
"""

from types import MappingProxyType

UNKNOWN_INTENT = "unknown"

INTENT_PATTERNS = MappingProxyType({
    # Media & Entertainment
    "play_music": ("play", "listen", "put on", "throw on", "bump", "blast", "music", "song", "spotify", "youtube music"),
    "play_video": ("watch", "video", "youtube", "stream", "movie"),
    "media_control": ("pause", "stop", "resume", "next", "skip", "previous", "back"),
    "volume_control": ("volume", "louder", "quieter", "mute", "unmute", "turn up", "turn down"),

    # Folders are registered ahead of apps so "open downloads" lands on the folder
    "open_folder": ("open folder", "go to folder", "show folder", "downloads", "documents", "desktop"),

    # Apps & System
    "open_app": ("open", "launch", "start", "run", "fire up"),
    "close_app": ("close", "kill", "quit", "exit", "end", "stop"),
    "power_control": ("shutdown", "shut down", "restart", "reboot", "sleep", "hibernate", "lock", "log off"),
    "system_control": ("brightness", "wifi", "bluetooth", "airplane", "night light"),

    # Files & Folders
    "file_operation": ("create", "delete", "move", "copy", "rename", "file", "folder"),
    "organize_files": ("organize", "sort", "clean up", "tidy", "arrange"),
    "find_files": ("find", "search", "locate", "where is"),

    # Information
    "web_search": ("search", "google", "look up", "what is", "who is", "how to", "find out"),
    "weather": ("weather", "temperature", "forecast", "rain", "sunny", "cold", "hot"),
    "system_info": ("battery", "disk space", "memory", "cpu", "processes", "running"),

    # Security
    "security_scan": ("scan", "virus", "malware", "spyware", "security check", "threat"),

    # Productivity
    "screenshot": ("screenshot", "capture screen", "screen capture", "snip"),
    "reminder": ("remind", "reminder", "alarm", "timer", "schedule"),
    "clipboard": ("clipboard", "copy", "paste", "copied"),

    # AI Features
    "generate_image": ("generate image", "create image", "draw", "paint", "illustrate", "make picture"),
    "analyze_image": ("what is this", "analyze", "describe", "explain image", "read text", "ocr"),

    # Code & Development
    "code_help": ("code", "programming", "debug", "error", "function", "script"),
    "install_software": ("install", "download", "get", "setup"),

    # General
    "greeting": ("hi", "hello", "hey", "good morning", "good evening", "what's up"),
    "help": ("help", "what can you do", "capabilities", "features"),
})

# Canonical intent vocabulary (what the remote classifier may answer with)
KNOWN_INTENTS = tuple(INTENT_PATTERNS) + (UNKNOWN_INTENT,)


_TYPOS_BY_CANONICAL = {
    "play": ("paly", "plya", "ply", "plau"),
    "spotify": ("spotfy", "spotiffy", "spotifi", "sptify"),
    "youtube": ("youtub", "yotube", "utube", "youube"),
    "open": ("opne", "opn", "oepn", "oen"),
    "close": ("clsoe", "closee", "clos", "colse"),
    "search": ("serach", "seach", "serch", "saerch"),
    "shutdown": ("shutdwon", "shutdonw", "shtdown"),
    "organize": ("orginize", "orgainze", "organiz", "oraganize"),
    "download": ("donwload", "downlaod", "downlod", "dwonload"),
    "downloads": ("donwloads", "downlaods", "downlods", "dwonloads"),
    "documents": ("documnets", "docuemnts", "documetns"),
    "screenshot": ("screenshoot", "screenahot", "screnshot"),
}

TYPO_MAP = MappingProxyType({
    typo: canonical
    for canonical, typos in _TYPOS_BY_CANONICAL.items()
    for typo in typos
})

SLANG_MAP = MappingProxyType({
    "put on": "play",
    "throw on": "play",
    "bump": "play",
    "blast": "play",
    "crank up": "play",
    "fire up": "open",
    "boot up": "open",
    "kill": "close",
    "nuke": "delete",
    "turn it up": "volume up",
    "turn it down": "volume down",
    "shh": "mute",
    "skip": "next",
    "go back": "previous",
})

# Longest phrase first so "turn it up" wins over any shorter overlap
SLANG_PHRASES = tuple(sorted(SLANG_MAP, key=len, reverse=True))


# Entity lookup tables
KNOWN_FOLDERS = ("downloads", "documents", "desktop", "pictures", "music", "videos")

PLATFORMS = (
    ("spotify", "spotify"),
    ("youtube music", "youtube_music"),
    ("youtube", "youtube"),
    ("soundcloud", "soundcloud"),
    ("apple music", "apple_music"),
)


# Closed action vocabularies: (canonical action, words), first match wins
FILE_ACTIONS = (
    ("create", ("create", "new")),
    ("delete", ("delete", "remove")),
    ("move", ("move",)),
    ("copy", ("copy",)),
    ("rename", ("rename",)),
    ("organize", ("organize", "sort")),
)
POWER_ACTIONS = (
    ("shutdown", ("shutdown", "shut down", "turn off", "power off")),
    ("restart", ("restart", "reboot")),
    ("sleep", ("sleep",)),
    ("hibernate", ("hibernate",)),
    ("lock", ("lock",)),
    ("logoff", ("logoff", "log off", "sign out")),
)
MEDIA_ACTIONS = (
    ("pause", ("pause", "stop")),
    ("play", ("resume", "play", "continue")),
    ("next", ("next", "skip")),
    ("previous", ("previous", "back")),
)
# "unmute" is checked before "mute" since it contains it
VOLUME_ACTIONS = (
    ("unmute", ("unmute",)),
    ("mute", ("mute",)),
    ("up", ("up", "louder", "increase")),
    ("down", ("down", "quieter", "decrease")),
)

ACTIONS_BY_INTENT = MappingProxyType({
    "file_operation": FILE_ACTIONS,
    "organize_files": FILE_ACTIONS,
    "power_control": POWER_ACTIONS,
    "media_control": MEDIA_ACTIONS,
    "volume_control": VOLUME_ACTIONS,
})


def match_action(text, table):
    """First canonical action in *table* with a word contained in *text*, else ""."""
    for action, words in table:
        if any(word in text for word in words):
            return action
    return ""


def canonical_action(intent, value):
    """
    Map a free-form action ("Shutdown", "shut  down", "REBOOT") onto the
    closed vocabulary of *intent*. Values with no match come back cleaned
    but otherwise unchanged.
    """
    cleaned = " ".join(str(value or "").lower().split())
    table = ACTIONS_BY_INTENT.get(intent)
    if not cleaned or table is None:
        return cleaned
    if any(cleaned == action for action, _ in table):
        return cleaned
    return match_action(cleaned, table) or cleaned
