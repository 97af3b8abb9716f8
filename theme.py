"""
Theme configuration engine.

A theme is a nested document with the namespaces listed in THEME_NAMESPACES.
Every field is optional: `resolve_theme` overlays whatever is present onto
DEFAULT_THEME, and `render_stylesheet` turns a resolved theme into one block of
CSS text. Render targets hold exactly one override stylesheet, so applying the
same theme twice leaves the target unchanged.
"""
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from errors import NotFound

logger = logging.getLogger("storefront.theme")

THEME_NAMESPACES = ("colors", "fonts", "spacing", "layout", "style", "header", "footer")

SYSTEM_FONT = '-apple-system, BlinkMacSystemFont, "Segoe UI", "Roboto", sans-serif'

DEFAULT_THEME: Dict[str, Dict[str, Any]] = {
    "colors": {
        "primary": "#8B5CF6",
        "secondary": "#7C3AED",
        "background": "#F7F8F9",
        "cardBackground": "#FFFFFF",
        "textPrimary": "#111827",
        "textSecondary": "#6B7280",
        "headerBg": "#FFFFFF",
        "footerBg": "#F3F4F6",
        "buttonBg": "#8B5CF6",
        "buttonText": "#FFFFFF",
        "borderColor": "#E5E7EB",
        "inStock": "#10B981",
        "outOfStock": "#EF4444",
    },
    "fonts": {
        "primary": SYSTEM_FONT,
        "heading": SYSTEM_FONT,
        "baseSize": "16px",
        "h1Size": "2.5rem",
        "priceSize": "1.25rem",
    },
    "spacing": {
        "productGap": "24px",
        "cardPadding": "24px",
    },
    "layout": {
        "maxWidth": "1200px",
        "productMinWidth": "280px",
        "productImageHeight": "240px",
    },
    "style": {
        "borderRadius": "12px",
        "borderWidth": "1px",
        "shadowIntensity": "medium",
        "cardHoverEffect": "lift",
    },
    "header": {
        "logoSize": "40px",
        "logoPosition": "left",
        "sticky": True,
    },
    "footer": {
        "padding": "32px 24px",
        "alignment": "center",
    },
}

PRESETS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "default": DEFAULT_THEME,
    "dark": {
        "colors": {
            "primary": "#A78BFA",
            "secondary": "#8B5CF6",
            "background": "#1F2937",
            "cardBackground": "#111827",
            "textPrimary": "#F9FAFB",
            "textSecondary": "#9CA3AF",
            "headerBg": "#111827",
            "footerBg": "#0F172A",
            "buttonBg": "#8B5CF6",
            "buttonText": "#FFFFFF",
            "borderColor": "#374151",
        },
    },
    "minimal": {
        "colors": {
            "primary": "#000000",
            "secondary": "#333333",
            "background": "#FFFFFF",
            "cardBackground": "#FFFFFF",
            "textPrimary": "#000000",
            "textSecondary": "#666666",
            "headerBg": "#FFFFFF",
            "footerBg": "#F5F5F5",
            "buttonBg": "#000000",
            "buttonText": "#FFFFFF",
        },
        "style": {
            "borderRadius": "0px",
            "shadowIntensity": "none",
            "cardHoverEffect": "none",
        },
    },
    "bold": {
        "colors": {
            "primary": "#FF6B6B",
            "secondary": "#4ECDC4",
            "background": "#FFE66D",
            "cardBackground": "#FFFFFF",
            "textPrimary": "#2C3E50",
            "textSecondary": "#7F8C8D",
            "headerBg": "#FF6B6B",
            "footerBg": "#4ECDC4",
            "buttonBg": "#FF6B6B",
            "buttonText": "#FFFFFF",
        },
        "style": {
            "shadowIntensity": "strong",
            "cardHoverEffect": "both",
        },
    },
    "elegant": {
        "colors": {
            "primary": "#8B7355",
            "secondary": "#A0826D",
            "background": "#FAF8F3",
            "cardBackground": "#FFFFFF",
            "textPrimary": "#2C2416",
            "textSecondary": "#6B5D4F",
            "headerBg": "#FFFFFF",
            "footerBg": "#F5F1E8",
            "buttonBg": "#8B7355",
            "buttonText": "#FFFFFF",
        },
        "fonts": {
            "heading": "'Playfair Display', serif",
            "primary": "'Georgia', serif",
        },
        "header": {
            "logoPosition": "center",
        },
    },
    "modern": {
        "colors": {
            "primary": "#0EA5E9",
            "secondary": "#06B6D4",
            "background": "#F8FAFC",
            "cardBackground": "#FFFFFF",
            "textPrimary": "#0F172A",
            "textSecondary": "#64748B",
            "headerBg": "#FFFFFF",
            "footerBg": "#F1F5F9",
            "buttonBg": "#0EA5E9",
            "buttonText": "#FFFFFF",
        },
        "fonts": {
            "primary": "'Inter', sans-serif",
            "heading": "'Inter', sans-serif",
        },
        "style": {
            "borderRadius": "16px",
            "shadowIntensity": "light",
        },
    },
}

SHADOWS = {
    "none": "none",
    "light": "0 1px 3px rgba(0, 0, 0, 0.08)",
    "medium": "0 4px 12px rgba(0, 0, 0, 0.10)",
    "strong": "0 10px 30px rgba(0, 0, 0, 0.20)",
}

HOVER_EFFECTS = {
    "none": (False, False),
    "lift": (True, False),
    "scale": (False, True),
    "both": (True, True),
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def overlay_theme(base: Dict[str, Dict[str, Any]], theme: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Return `base` with every non-blank field of `theme` laid over it.

    Legacy flat fields only count when their namespace is absent from `theme`:
    headerColor/buttonColor feed the accent colors, fontFamily the body font.
    """
    merged = {ns: dict(base.get(ns) or {}) for ns in THEME_NAMESPACES}
    theme = theme or {}

    for ns in THEME_NAMESPACES:
        section = theme.get(ns)
        if not isinstance(section, dict):
            continue
        for key, value in section.items():
            if _is_blank(value):
                continue
            merged[ns][key] = value

    if theme.get("colors") is None:
        if not _is_blank(theme.get("headerColor")):
            merged["colors"]["primary"] = theme["headerColor"]
        if not _is_blank(theme.get("buttonColor")):
            merged["colors"]["secondary"] = theme["buttonColor"]
    if theme.get("fonts") is None and not _is_blank(theme.get("fontFamily")):
        merged["fonts"]["primary"] = theme["fontFamily"]

    return merged


def resolve_theme(theme: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return overlay_theme(DEFAULT_THEME, theme)


def merge_preset(name: str) -> Dict[str, Dict[str, Any]]:
    """Preset values over the default preset, merged one namespace deep."""
    preset = PRESETS.get(name)
    if preset is None:
        raise NotFound(f"Unknown preset: {name}")
    default = PRESETS["default"]
    return {
        ns: {**default.get(ns, {}), **preset.get(ns, {})}
        for ns in THEME_NAMESPACES
    }


def _declarations(props: Dict[str, Any]) -> str:
    return " ".join(f"{prop}: {value};" for prop, value in props.items())


def _rule(selector: str, props: Dict[str, Any]) -> str:
    return f"{selector} {{ {_declarations(props)} }}"


def render_stylesheet(config: Dict[str, Dict[str, Any]]) -> str:
    """Render a resolved theme as CSS text.

    Missing namespaces or keys are filled from DEFAULT_THEME first, so a
    partial config still yields a complete stylesheet. Values are emitted
    verbatim; an invalid CSS value is left for the browser to ignore.
    """
    t = overlay_theme(DEFAULT_THEME, config)
    colors, fonts, spacing = t["colors"], t["fonts"], t["spacing"]
    layout, style, header, footer = t["layout"], t["style"], t["header"], t["footer"]

    shadow = SHADOWS.get(style["shadowIntensity"], style["shadowIntensity"])
    lift, zoom = HOVER_EFFECTS.get(style["cardHoverEffect"], (False, False))

    rules: List[str] = [
        _rule(":root", {
            "--accent-primary": colors["primary"],
            "--accent-hover": colors["secondary"],
            "--bg-primary": colors["headerBg"],
            "--bg-secondary": colors["background"],
            "--bg-card": colors["cardBackground"],
            "--bg-footer": colors["footerBg"],
            "--text-primary": colors["textPrimary"],
            "--text-secondary": colors["textSecondary"],
            "--border-color": colors["borderColor"],
            "--btn-bg": colors["buttonBg"],
            "--btn-text": colors["buttonText"],
            "--success": colors["inStock"],
            "--danger": colors["outOfStock"],
            "--radius-lg": style["borderRadius"],
            "--space-lg": spacing["productGap"],
            "--shadow-card": shadow,
        }),
        _rule("body", {
            "font-family": fonts["primary"],
            "font-size": fonts["baseSize"],
            "background-color": colors["background"],
            "color": colors["textPrimary"],
        }),
        _rule("h1, h2, h3, h4, h5, h6", {"font-family": fonts["heading"]}),
        _rule("h1", {"font-size": fonts["h1Size"]}),
        _rule(".price, .modal-price", {"font-size": fonts["priceSize"], "color": colors["primary"]}),
        _rule(".container", {"max-width": layout["maxWidth"], "margin": "0 auto"}),
        _rule(".product-grid", {
            "display": "grid",
            "grid-template-columns": f"repeat(auto-fill, minmax({layout['productMinWidth']}, 1fr))",
            "gap": spacing["productGap"],
        }),
        _rule(".product-card", {
            "background-color": colors["cardBackground"],
            "border": f"{style['borderWidth']} solid {colors['borderColor']}",
            "border-radius": style["borderRadius"],
            "box-shadow": shadow,
            "overflow": "hidden",
            "transition": "transform 0.2s ease, box-shadow 0.2s ease",
        }),
        _rule(".product-card-content", {"padding": spacing["cardPadding"]}),
        _rule(".product-card img", {
            "height": layout["productImageHeight"],
            "width": "100%",
            "object-fit": "cover",
            "transition": "transform 0.3s ease",
        }),
        _rule(".product-card p, .product-description", {"color": colors["textSecondary"]}),
        _rule(".in-stock", {"color": colors["inStock"]}),
        _rule(".out-of-stock", {"color": colors["outOfStock"]}),
        _rule("button, .btn, .btn-primary", {
            "background-color": colors["buttonBg"],
            "color": colors["buttonText"],
            "border-radius": style["borderRadius"],
        }),
        _rule("button:hover, .btn:hover, .btn-primary:hover", {"background-color": colors["secondary"]}),
    ]

    rules.append(_rule(".product-card:hover", {"transform": "translateY(-4px)" if lift else "none"}))
    rules.append(_rule(".product-card:hover img", {"transform": "scale(1.05)" if zoom else "none"}))

    header_props = {
        "background-color": colors["headerBg"],
        "border-bottom": f"{style['borderWidth']} solid {colors['borderColor']}",
    }
    if header.get("sticky"):
        header_props.update({"position": "sticky", "top": "0", "z-index": "100"})
    else:
        header_props["position"] = "relative"
    rules.append(_rule("header", header_props))

    position = header.get("logoPosition")
    content_props: Dict[str, Any] = {"display": "flex", "align-items": "center", "position": "relative"}
    logo_props: Dict[str, Any] = {"height": header["logoSize"]}
    if position == "center":
        # logo is centred on the bar itself, nav items stay where they are
        content_props["justify-content"] = "flex-end"
        logo_props.update({"position": "absolute", "left": "50%", "transform": "translateX(-50%)"})
    elif position == "right":
        content_props.update({"justify-content": "space-between", "flex-direction": "row-reverse"})
        logo_props.update({"position": "static", "transform": "none"})
    else:
        content_props.update({"justify-content": "space-between", "flex-direction": "row"})
        logo_props.update({"position": "static", "transform": "none"})
    rules.append(_rule("header .header-content", content_props))
    rules.append(_rule("header .logo, #shopBranding", logo_props))
    rules.append(_rule("header .logo img, #shopBranding img", {"height": header["logoSize"]}))

    rules.append(_rule("footer", {
        "background-color": colors["footerBg"],
        "padding": footer["padding"],
        "text-align": footer["alignment"],
        "color": colors["textSecondary"],
    }))

    return "\n".join(rules) + "\n"


class StyleDocument:
    """A render target holding a single override stylesheet."""

    ready = True

    def __init__(self):
        self.stylesheet: Optional[str] = None
        self._waiting: List[Callable[[], None]] = []

    def when_ready(self, callback: Callable[[], None]):
        if self.ready:
            callback()
        else:
            self._waiting.append(callback)

    def replace_stylesheet(self, css: str):
        self.stylesheet = css


class PreviewSurface(StyleDocument):
    """Embedded preview document; applies are deferred until it has loaded."""

    def __init__(self):
        super().__init__()
        self.ready = False

    @property
    def pending(self) -> int:
        return len(self._waiting)

    def mark_loaded(self):
        if self.ready:
            return
        self.ready = True
        waiting, self._waiting = self._waiting, []
        logger.debug("Preview loaded, replaying %d deferred theme applies", len(waiting))
        for callback in waiting:
            callback()


class ThemeEngine:
    """Holds the currently applied theme and pushes it to render targets."""

    def __init__(self, base: Optional[Dict[str, Any]] = None):
        self.current = resolve_theme(base)

    def apply(self, config: Optional[Dict[str, Any]], target: StyleDocument):
        snapshot = copy.deepcopy(config) if config else {}

        def _apply_now():
            self.current = overlay_theme(self.current, snapshot)
            target.replace_stylesheet(render_stylesheet(self.current))

        target.when_ready(_apply_now)

    def apply_preset(self, name: str, target: StyleDocument):
        self.apply(merge_preset(name), target)
