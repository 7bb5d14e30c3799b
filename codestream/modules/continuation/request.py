from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from codestream.modules.streaming.types import WireFormat


@dataclass
class GenerationRequest:
    """One model call: the prompt plus everything needed to rebuild it for a follow-up batch"""
    prompt: str
    system_instruction: str = ""
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    context_files: Dict[str, str] = field(default_factory=dict)
    batch_index: int = 1
    response_format: Optional[WireFormat] = None

    def user_message(self) -> str:
        if not self.context_files:
            return self.prompt
        sections = [f"### {path}\n```\n{content}\n```" for path, content in self.context_files.items()]
        return "## Current files\n\n" + "\n\n".join(sections) + "\n\n## Request\n\n" + self.prompt

    def follow_up(self, prompt: str, system_instruction: str, batch_index: int) -> "GenerationRequest":
        """Same model settings, new prompt and instruction"""
        return replace(
            self,
            prompt=prompt,
            system_instruction=system_instruction,
            batch_index=batch_index,
            context_files={},
        )
