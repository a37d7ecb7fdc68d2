"""Catalog of available models and their default settings."""

from chatshared import ConversationSettings, Model

DEFAULT_TEMPERATURE = 0.7
DETERMINISTIC_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 4096


class ModelCatalog:
    """Static model catalog."""

    def __init__(self, models: list[Model] | None = None):
        self._models = list(models) if models is not None else list(DEFAULT_MODELS)

    async def get_models(self) -> list[Model]:
        return list(self._models)

    async def get_model(self, model_id: str) -> Model | None:
        return next((m for m in self._models if m.id == model_id), None)

    async def default_settings(self, model_id: str) -> ConversationSettings:
        """Defaults derived from the model id and its token ceiling."""
        model = await self.get_model(model_id)
        return default_settings_for(model_id, model)


def default_settings_for(model_id: str, model: Model | None) -> ConversationSettings:
    if model is None:
        return ConversationSettings(
            model=model_id,
            temperature=DEFAULT_TEMPERATURE,
            max_tokens=DEFAULT_MAX_TOKENS,
        )
    return ConversationSettings(
        model=model.id,
        temperature=DETERMINISTIC_TEMPERATURE if model.deterministic else DEFAULT_TEMPERATURE,
        max_tokens=min(model.max_tokens, DEFAULT_MAX_TOKENS),
    )


DEFAULT_MODELS = [
    Model(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        description="Fast and efficient model for most tasks",
        max_tokens=4096,
    ),
    Model(
        id="gpt-4",
        name="GPT-4",
        description="Most capable model for complex tasks",
        max_tokens=8192,
        deterministic=True,
    ),
    Model(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        description="Faster version of GPT-4 with better performance",
        max_tokens=128000,
    ),
    Model(
        id="claude-3-sonnet",
        name="Claude 3 Sonnet",
        description="Balanced model with strong reasoning capabilities",
        max_tokens=200000,
    ),
    Model(
        id="claude-3-opus",
        name="Claude 3 Opus",
        description="Most powerful Claude model for complex reasoning",
        max_tokens=200000,
        deterministic=True,
    ),
]

# Global catalog instance
model_catalog = ModelCatalog()
