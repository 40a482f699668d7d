"""
Capability Registry for the Understanding Layer.

Static table of every automation the assistant knows about, keyed by intent.
Unimplemented capabilities carry a build plan so the Planner can offer to
build them instead of failing.
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional

from understanding.models import CapabilityModule

logger = logging.getLogger(__name__)


# (intent, category, description, implemented, build_plan)
_DEFAULT_CAPABILITIES = (
    # Media
    ("play_music", "Media", "Play music on various platforms", True, None),
    ("play_video", "Media", "Play videos on YouTube", True, None),
    ("media_control", "Media", "Pause, play, skip media", True, None),
    # System
    ("volume_control", "System", "Control system volume", True, None),
    ("open_app", "System", "Open applications", True, None),
    ("close_app", "System", "Close applications", True, None),
    ("power_control", "System", "Shutdown, restart, sleep, lock", True, None),
    ("system_control", "System", "Brightness, Wi-Fi, Bluetooth and other toggles", True, None),
    ("install_software", "System", "Install software", True, None),
    # Files
    ("file_operation", "Files", "Create, delete, move, copy files", True, None),
    ("organize_files", "Files", "Organize files by type", True, None),
    ("find_files", "Files", "Search for files", True, None),
    ("open_folder", "Files", "Open folder in the file browser", True, None),
    # Information
    ("web_search", "Information", "Search the web", True, None),
    ("weather", "Information", "Get weather information", True, None),
    ("system_info", "Information", "Get system information", True, None),
    # Security
    ("security_scan", "Security", "Scan for malware/threats", True, None),
    # Productivity
    ("screenshot", "Productivity", "Capture screen", True, None),
    # AI
    ("generate_image", "AI", "Generate images with AI", True, None),
    # Development
    ("code_help", "Development", "Help with code", True, None),
    # Chat
    ("greeting", "Chat", "Small talk and greetings", True, None),
    ("help", "Chat", "Describe what the assistant can do", True, None),
    # Not yet implemented
    ("reminder", "Productivity", "Set reminders", False,
     "Build a reminder system on top of the OS task scheduler"),
    ("email", "Communication", "Send emails", False,
     "Integrate with an Outlook/Gmail API"),
)


class CapabilityRegistry:
    """
    Registry of available capabilities.

    Built once; lookups never mutate it. Pass *capabilities* to replace the
    default table (tests, alternative deployments).
    """

    def __init__(self, capabilities: Optional[Iterable[CapabilityModule]] = None):
        table: Dict[str, CapabilityModule] = {}

        if capabilities is None:
            capabilities = (
                CapabilityModule(
                    name=intent,
                    category=category,
                    description=description,
                    implemented=implemented,
                    build_plan=build_plan,
                    supported_intents=(intent,),
                )
                for intent, category, description, implemented, build_plan in _DEFAULT_CAPABILITIES
            )

        for module in capabilities:
            for intent in module.supported_intents or (module.name,):
                table[intent] = module

        self._capabilities = MappingProxyType(table)
        logger.debug("CapabilityRegistry built with %d intents", len(table))

    def get(self, intent: str) -> Optional[CapabilityModule]:
        """Get capability by intent name."""
        return self._capabilities.get(intent)

    def is_implemented(self, intent: str) -> bool:
        module = self._capabilities.get(intent)
        return module is not None and module.implemented

    def all(self) -> List[CapabilityModule]:
        # Modules registered under several intents are listed once
        seen = []
        for module in self._capabilities.values():
            if module not in seen:
                seen.append(module)
        return seen

    def by_category(self, category: str) -> List[CapabilityModule]:
        return [m for m in self.all() if m.category == category]

    def __contains__(self, intent: str) -> bool:
        return intent in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)
