"""
Prompt Manager

Prompts live in YAML files under ``invoicex/prompts`` so they can be edited
without code changes. Templates are rendered with Jinja2.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from jinja2 import Environment, StrictUndefined
import logging

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path(__file__).parent.parent.parent / "prompts"


class PromptManager:
    """Manages prompts loaded from external files"""

    def __init__(self, prompts_dir: Optional[str] = None):
        """
        Initialize PromptManager

        Args:
            prompts_dir: Directory containing prompt files. If None, uses the
                prompts shipped with the package.
        """
        self.prompts_dir = Path(prompts_dir) if prompts_dir else DEFAULT_PROMPTS_DIR
        self._prompts_cache: Dict[str, Dict[str, Any]] = {}
        self._env = Environment(
            undefined=StrictUndefined,
            keep_trailing_newline=False,
            trim_blocks=True,
            lstrip_blocks=True
        )

    def load_prompt(self, prompt_name: str, use_cache: bool = True) -> Dict[str, Any]:
        """
        Load a prompt from YAML file

        Args:
            prompt_name: Name of the prompt (without .yaml extension)
            use_cache: Whether to use cached prompts

        Returns:
            Prompt definition dictionary

        Raises:
            FileNotFoundError: If the prompt file does not exist
        """
        if use_cache and prompt_name in self._prompts_cache:
            return self._prompts_cache[prompt_name]

        prompt_file = self.prompts_dir / f"{prompt_name}.yaml"
        if not prompt_file.exists():
            raise FileNotFoundError(f"Prompt file not found: {prompt_file}")

        try:
            with open(prompt_file, 'r', encoding='utf-8') as f:
                prompt_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to load prompt {prompt_name}: {e}")
            raise

        if use_cache:
            self._prompts_cache[prompt_name] = prompt_data
        return prompt_data

    def render(self, prompt_name: str, key: str, **kwargs) -> str:
        """
        Render one template of a prompt file

        Args:
            prompt_name: Name of the prompt
            key: Template key inside the file, e.g. 'system_prompt'
            **kwargs: Template variables

        Returns:
            Rendered string
        """
        template_str = self.load_prompt(prompt_name).get(key, '')
        return self._env.from_string(template_str).render(**kwargs).strip()

    def clear_cache(self):
        """Clear the prompts cache"""
        self._prompts_cache.clear()

    def list_prompts(self) -> list:
        """List all available prompt files"""
        if not self.prompts_dir.exists():
            return []
        return sorted(f.stem for f in self.prompts_dir.glob("*.yaml"))
