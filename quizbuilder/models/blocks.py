"""Block models for the visual builder.

A block is a typed content unit living inside a step or an outcome. The
``config`` payload is selected by ``type``; any type this module does not
know is kept as an :class:`OpaqueBlock` so documents written by newer
clients survive a load/save cycle untouched.
"""

from __future__ import annotations

import logging
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

BlockType = Literal[
    "header",
    "text",
    "media",
    "options",
    "fields",
    "price",
    "button",
    "banner",
    "list",
    "loading",
]

BLOCK_TYPES: tuple[str, ...] = (
    "header",
    "text",
    "media",
    "options",
    "fields",
    "price",
    "button",
    "banner",
    "list",
    "loading",
)


def new_id(prefix: str) -> str:
    """Return a fresh identifier such as ``block_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys (the persisted format)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LenientModel(CamelModel):
    """Model that falls back to field defaults instead of failing validation.

    Unknown keys are kept, invalid values are dropped (and replaced by the
    field default) with a warning.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    @model_validator(mode="wrap")
    @classmethod
    def _fall_back_to_defaults(cls, data: Any, handler: Any) -> Any:
        if isinstance(data, cls):
            return handler(data)
        if not isinstance(data, dict):
            logger.warning(
                "Expected a mapping for %s, got %s; using defaults",
                cls.__name__,
                type(data).__name__,
            )
            return handler({})
        try:
            return handler(data)
        except ValidationError as exc:
            invalid = _invalid_keys(cls, exc)
            logger.warning(
                "Invalid %s fields %s; falling back to defaults",
                cls.__name__,
                sorted(invalid),
            )
            return handler({k: v for k, v in data.items() if k not in invalid})


def _invalid_keys(model_cls: type[BaseModel], exc: ValidationError) -> set[str]:
    keys: set[str] = set()
    for error in exc.errors():
        loc = error.get("loc") or ()
        if not loc:
            continue
        key = str(loc[0])
        keys.add(key)
        for name, field in model_cls.model_fields.items():
            if key in (name, field.alias):
                keys.add(name)
                if field.alias:
                    keys.add(field.alias)
    return keys


# -- Config payloads ---------------------------------------------------------


class HeaderConfig(LenientModel):
    title: str = ""
    description: str = ""


class TextConfig(LenientModel):
    content: str = ""


class FocalPoint(LenientModel):
    """Image focal point, in percent from the top-left corner."""

    x: float = Field(50, ge=0, le=100)
    y: float = Field(50, ge=0, le=100)


class MediaConfig(LenientModel):
    type: Literal["image", "video"] = "image"
    url: str = ""
    alt: str | None = None
    orientation: Literal["horizontal", "vertical"] = "horizontal"
    video_thumbnail: str | None = None
    focal_point: FocalPoint | None = None


class OptionItem(LenientModel):
    id: str = Field(default_factory=lambda: new_id("option"))
    text: str = ""
    emoji: str | None = None
    # Routing target; points at an Outcome id, never at another block.
    outcome_id: str | None = None


class OptionsConfig(LenientModel):
    items: list[OptionItem] = Field(default_factory=list)
    selection_type: Literal["single", "multiple"] = "single"


FieldType = Literal["text", "email", "phone", "number", "textarea"]


class FieldItem(LenientModel):
    id: str = Field(default_factory=lambda: new_id("field"))
    label: str = ""
    type: FieldType = "text"
    placeholder: str | None = None
    required: bool = False


class FieldsConfig(LenientModel):
    items: list[FieldItem] = Field(default_factory=list)


class PriceItem(LenientModel):
    id: str = Field(default_factory=lambda: new_id("price"))
    title: str = ""
    prefix: str | None = None
    value: str = ""
    suffix: str | None = None
    original_price: str | None = None
    show_original_price: bool | None = None
    highlight_text: str | None = None
    show_highlight: bool | None = None
    redirect_url: str | None = None


class PriceConfig(LenientModel):
    items: list[PriceItem] = Field(default_factory=list)
    selection_type: Literal["single", "multiple"] = "single"


ButtonAction = Literal["url", "next_step", "selected_price"]


class ButtonConfig(LenientModel):
    text: str = ""
    action: ButtonAction = "next_step"
    url: str | None = None


class BannerConfig(LenientModel):
    urgency: Literal["info", "warning", "danger"] = "info"
    text: str = ""
    emoji: str | None = None


class ListItem(LenientModel):
    id: str = Field(default_factory=lambda: new_id("list"))
    text: str = ""
    emoji: str | None = None


class ListConfig(LenientModel):
    items: list[ListItem] = Field(default_factory=list)


class LoadingConfig(LenientModel):
    text: str = ""
    duration: float = Field(3, ge=0)


# -- Blocks ------------------------------------------------------------------


class _BlockBase(CamelModel):
    # Keys added by newer editors survive a load/save cycle
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: str = Field(default_factory=lambda: new_id("block"))
    enabled: bool = True


class HeaderBlock(_BlockBase):
    type: Literal["header"] = Field("header", frozen=True)
    config: HeaderConfig = Field(default_factory=HeaderConfig)


class TextBlock(_BlockBase):
    type: Literal["text"] = Field("text", frozen=True)
    config: TextConfig = Field(default_factory=TextConfig)


class MediaBlock(_BlockBase):
    type: Literal["media"] = Field("media", frozen=True)
    config: MediaConfig = Field(default_factory=MediaConfig)


class OptionsBlock(_BlockBase):
    type: Literal["options"] = Field("options", frozen=True)
    config: OptionsConfig = Field(default_factory=OptionsConfig)


class FieldsBlock(_BlockBase):
    type: Literal["fields"] = Field("fields", frozen=True)
    config: FieldsConfig = Field(default_factory=FieldsConfig)


class PriceBlock(_BlockBase):
    type: Literal["price"] = Field("price", frozen=True)
    config: PriceConfig = Field(default_factory=PriceConfig)


class ButtonBlock(_BlockBase):
    type: Literal["button"] = Field("button", frozen=True)
    config: ButtonConfig = Field(default_factory=ButtonConfig)


class BannerBlock(_BlockBase):
    type: Literal["banner"] = Field("banner", frozen=True)
    config: BannerConfig = Field(default_factory=BannerConfig)


class ListBlock(_BlockBase):
    type: Literal["list"] = Field("list", frozen=True)
    config: ListConfig = Field(default_factory=ListConfig)


class LoadingBlock(_BlockBase):
    type: Literal["loading"] = Field("loading", frozen=True)
    config: LoadingConfig = Field(default_factory=LoadingConfig)


class OpaqueBlock(_BlockBase):
    """A block of a type this version does not understand.

    The config is carried verbatim.
    """

    type: str = Field("unknown", frozen=True)
    config: Any = Field(default_factory=dict)


def _block_tag(value: Any) -> str:
    if isinstance(value, dict):
        block_type = value.get("type")
    else:
        block_type = getattr(value, "type", None)
    return block_type if block_type in BLOCK_TYPES else "opaque"


Block = Annotated[
    Union[
        Annotated[HeaderBlock, Tag("header")],
        Annotated[TextBlock, Tag("text")],
        Annotated[MediaBlock, Tag("media")],
        Annotated[OptionsBlock, Tag("options")],
        Annotated[FieldsBlock, Tag("fields")],
        Annotated[PriceBlock, Tag("price")],
        Annotated[ButtonBlock, Tag("button")],
        Annotated[BannerBlock, Tag("banner")],
        Annotated[ListBlock, Tag("list")],
        Annotated[LoadingBlock, Tag("loading")],
        Annotated[OpaqueBlock, Tag("opaque")],
    ],
    Discriminator(_block_tag),
]

BLOCK_ADAPTER: TypeAdapter[Block] = TypeAdapter(Block)

CONFIG_MODELS: dict[str, type[LenientModel]] = {
    "header": HeaderConfig,
    "text": TextConfig,
    "media": MediaConfig,
    "options": OptionsConfig,
    "fields": FieldsConfig,
    "price": PriceConfig,
    "button": ButtonConfig,
    "banner": BannerConfig,
    "list": ListConfig,
    "loading": LoadingConfig,
}


def default_block_config(block_type: str) -> LenientModel | dict[str, Any]:
    """Return the config a freshly created block of ``block_type`` starts with."""
    if block_type == "fields":
        return FieldsConfig(
            items=[
                FieldItem(
                    label="Nome",
                    type="text",
                    placeholder="Digite seu nome...",
                    required=True,
                )
            ]
        )
    if block_type == "price":
        return PriceConfig(
            items=[PriceItem(title="Plano", value="R$ 99,90", suffix="à vista")],
            selection_type="single",
        )
    if block_type == "button":
        return ButtonConfig(text="Continuar", action="next_step")
    if block_type == "list":
        return ListConfig(
            items=[ListItem(text=f"Item da lista {n}", emoji="✓") for n in (1, 2, 3)]
        )
    if block_type == "loading":
        return LoadingConfig(text="Carregando...", duration=3)
    config_cls = CONFIG_MODELS.get(block_type)
    if config_cls is None:
        return {}
    return config_cls()


def create_block(block_type: str, **overrides: Any) -> Block:
    """Create a block with a fresh id, ``enabled=True`` and default config.

    ``overrides`` may set ``id`` or ``enabled``; a ``config`` mapping is
    merged over the defaults.
    """
    config_updates = overrides.pop("config", None)
    payload: dict[str, Any] = {
        "type": block_type,
        "config": default_block_config(block_type),
        **overrides,
    }
    block = BLOCK_ADAPTER.validate_python(payload)
    if config_updates:
        block = merge_block_config(block, config_updates)
    return block


def _field_names(model_cls: type[BaseModel], updates: dict[str, Any]) -> dict[str, Any]:
    aliases = {
        field.alias: name
        for name, field in model_cls.model_fields.items()
        if field.alias and field.alias != name
    }
    return {aliases.get(key, key): value for key, value in updates.items()}


def merge_block_config(block: Block, updates: dict[str, Any]) -> Block:
    """Return a copy of ``block`` with ``updates`` applied to its config.

    Keys may be field names or their camelCase aliases. Keys the config
    model does not declare are kept as-is.
    """
    if isinstance(block, OpaqueBlock):
        current = block.config if isinstance(block.config, dict) else {}
        return block.model_copy(update={"config": {**current, **updates}})

    config_cls = type(block.config)
    merged = {**block.config.model_dump(), **_field_names(config_cls, updates)}
    return block.model_copy(update={"config": config_cls.model_validate(merged)})


def copy_block_with_new_id(block: Block) -> Block:
    """Deep copy of ``block`` under a fresh id (used when duplicating)."""
    copied = block.model_copy(deep=True)
    copied.id = new_id("block")
    return copied
