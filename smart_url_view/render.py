"""HTML markup for link cards."""

from __future__ import annotations

import html

from requests.utils import requote_uri

from .models import CardModel
from .utils import is_valid_url, truncate_text

TARGET_BLANK_ATTRS = ' target="_blank" rel="noopener noreferrer"'
HIDE_ON_ERROR = "this.parentElement.style.display='none'"


def esc_url(url: str) -> str:
    """Make ``url`` safe for an href/src attribute; non-http(s) URLs become empty."""
    url = (url or "").strip()
    if not is_valid_url(url):
        return ""
    return html.escape(requote_uri(url), quote=True)


def esc_html(text: str) -> str:
    return html.escape(text or "", quote=True)


def build_card(
    url: str,
    title: str,
    description: str = "",
    image_url: str = "",
    site_name: str = "",
    target_blank: bool = False,
    label: str = "",
) -> CardModel:
    """Create a CardModel, truncating the description to the display limit."""
    return CardModel(
        url=url,
        title=title or url,
        description=truncate_text((description or "").strip()),
        image_url=image_url or "",
        site_name=site_name or "",
        target_blank=target_blank,
        label=label or "",
    )


def _open_card(url: str, target_blank: bool, label: str = "") -> str:
    data_attr = f' data-type="{esc_html(label)}"' if label else ""
    target = TARGET_BLANK_ATTRS if target_blank else ""
    return (
        f'<div class="smart-url-view-card"{data_attr}>'
        f'<a href="{esc_url(url)}"{target} class="smart-url-view-link">'
    )


def render_card(model: CardModel) -> str:
    """Render the full card: optional thumbnail, title, description and site."""
    parts = [_open_card(model.url, model.target_blank, model.label)]

    image_src = esc_url(model.image_url)
    if image_src:
        parts.append(
            '<div class="smart-url-view-thumbnail">'
            f'<img src="{image_src}" alt="{esc_html(model.title)}" loading="lazy" '
            f'onerror="{HIDE_ON_ERROR}">'
            "</div>"
        )

    parts.append('<div class="smart-url-view-content">')
    parts.append(f'<div class="smart-url-view-title">{esc_html(model.title)}</div>')
    if model.description:
        parts.append(
            f'<div class="smart-url-view-description">{esc_html(model.description)}</div>'
        )
    parts.append(f'<div class="smart-url-view-site">{esc_html(model.site_name)}</div>')
    parts.append("</div></a></div>")
    return "".join(parts)


def render_simple_card(url: str, site_name: str, target_blank: bool = False) -> str:
    """Render the degraded card used when no metadata is available."""
    return (
        _open_card(url, target_blank)
        + '<div class="smart-url-view-content">'
        + f'<div class="smart-url-view-title">{esc_html(url)}</div>'
        + f'<div class="smart-url-view-site">{esc_html(site_name)}</div>'
        + "</div></a></div>"
    )
