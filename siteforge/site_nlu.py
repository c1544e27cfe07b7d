"""Deterministic prompt -> page skeleton used when no model is available."""
from __future__ import annotations

import datetime as _dt
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

_DARK_RE = re.compile(r"dark(\s|-|_)mode|dark theme")
_BRAND_RE = re.compile(r"(?:called|named|for)\s+([A-Z][\w\s&'-]{2,40})", re.IGNORECASE)
_QUOTED_RE = re.compile(r'"([^"]{5,120})"')


@dataclass
class SiteSection:
    type: str
    props: Dict[str, Any]


@dataclass
class SitePage:
    path: str
    title: str
    sections: List[SiteSection] = field(default_factory=list)


@dataclass
class SiteSpec:
    pages: List[SitePage]
    mode: str = "light"


def parse_intent(prompt: str, year: int = 0) -> SiteSpec:
    lower = prompt.lower()
    wants_dark = bool(_DARK_RE.search(lower))

    m = _BRAND_RE.search(prompt)
    site_title = m.group(1).strip() if m else "My Site"
    q = _QUOTED_RE.search(prompt)
    hero_title = q.group(1) if q else site_title
    year = year or _dt.date.today().year

    sections = [
        SiteSection("SiteHeader", {
            "id": "SiteHeader-1",
            "logoAlt": site_title,
            "logoSrc": "",
            "nav": [{"label": "Home", "href": "/"}, {"label": "Contact", "href": "/contact"}],
        }),
        SiteSection("Hero", {
            "id": "Hero-1",
            "title": hero_title,
            "subtitle": "",
            "backgroundImage": "",
            "cta": {"label": "Get started", "href": "/#"},
        }),
        SiteSection("FeatureGrid", {
            "id": "FeatureGrid-1",
            "items": [
                {"title": "Feature A", "desc": "Describe a key benefit", "icon": "spark"},
                {"title": "Feature B", "desc": "What makes you unique", "icon": "star"},
                {"title": "Feature C", "desc": "Another highlight", "icon": "bolt"},
            ],
        }),
        SiteSection("SiteFooter", {
            "id": "SiteFooter-1",
            "copyright": f"© {year} {site_title}",
            "social": [],
        }),
    ]
    return SiteSpec(pages=[SitePage(path="/", title=site_title, sections=sections)], mode="dark" if wants_dark else "light")


def site_spec_to_data(spec: SiteSpec) -> Dict[str, Any]:
    home = next((p for p in spec.pages if p.path == "/"), spec.pages[0])
    return {
        "content": [{"type": s.type, "props": dict(s.props)} for s in home.sections],
        "root": {"props": {"title": home.title or "My Site", "theme": spec.mode or "light"}},
        "zones": {},
    }


def builtin_config() -> Dict[str, Any]:
    """Component library matching the sections produced by :func:`parse_intent`."""
    return {
        "components": {
            "SiteHeader": {
                "label": "Site Header",
                "fields": {
                    "logoAlt": {"type": "text", "label": "Site name"},
                    "logoSrc": {"type": "text", "label": "Logo URL"},
                    "nav": {
                        "type": "array",
                        "label": "Navigation",
                        "arrayFields": {
                            "label": {"type": "text", "label": "Label"},
                            "href": {"type": "text", "label": "Link"},
                        },
                        "defaultItemProps": {"label": "Link", "href": "/"},
                        "getItemSummary": "(item) => item.label || 'Link'",
                    },
                },
                "render": (
                    "({ logoAlt, logoSrc, nav = [] }) => React.createElement('header', "
                    "{ className: 'flex items-center justify-between px-8 py-4 border-b' }, "
                    "logoSrc ? React.createElement('img', { src: logoSrc, alt: logoAlt, className: 'h-8' }) "
                    ": React.createElement('span', { className: 'text-xl font-bold' }, logoAlt), "
                    "React.createElement('nav', { className: 'flex gap-6' }, "
                    "...nav.map((link, i) => React.createElement('a', { key: i, href: link.href }, link.label))))"
                ),
            },
            "Hero": {
                "label": "Hero",
                "fields": {
                    "title": {"type": "text", "label": "Title"},
                    "subtitle": {"type": "textarea", "label": "Subtitle"},
                    "backgroundImage": {"type": "text", "label": "Background image URL"},
                },
                "render": (
                    "({ title, subtitle, backgroundImage, cta }) => React.createElement('section', "
                    "{ className: 'px-8 py-24 text-center bg-cover', "
                    "style: backgroundImage ? { backgroundImage: `url(${backgroundImage})` } : {} }, "
                    "React.createElement('h1', { className: 'text-5xl font-bold' }, title), "
                    "subtitle ? React.createElement('p', { className: 'mt-4 text-lg' }, subtitle) : null, "
                    "cta && cta.label ? React.createElement('a', { href: cta.href || '#', "
                    "className: 'inline-block mt-8 px-6 py-3 rounded bg-indigo-600 text-white' }, cta.label) : null)"
                ),
            },
            "FeatureGrid": {
                "label": "Feature Grid",
                "fields": {
                    "items": {
                        "type": "array",
                        "label": "Features",
                        "arrayFields": {
                            "title": {"type": "text", "label": "Title"},
                            "desc": {"type": "textarea", "label": "Description"},
                            "icon": {"type": "text", "label": "Icon"},
                        },
                        "defaultItemProps": {"title": "New feature", "desc": "", "icon": "spark"},
                        "getItemSummary": "(item, index) => item.title || `Feature ${index + 1}`",
                    },
                },
                "render": (
                    "({ items = [] }) => React.createElement('section', "
                    "{ className: 'grid gap-8 px-8 py-16 md:grid-cols-3' }, "
                    "...items.map((item, i) => React.createElement('div', { key: i, className: 'p-6 rounded-xl border' }, "
                    "React.createElement('h3', { className: 'text-xl font-semibold' }, item.title), "
                    "React.createElement('p', { className: 'mt-2' }, item.desc))))"
                ),
            },
            "SiteFooter": {
                "label": "Site Footer",
                "fields": {
                    "copyright": {"type": "text", "label": "Copyright"},
                },
                "render": (
                    "({ copyright }) => React.createElement('footer', "
                    "{ className: 'px-8 py-6 text-sm text-center border-t' }, copyright)"
                ),
            },
        }
    }


def offline_generation(prompt: str) -> Dict[str, Any]:
    """A ``{data, config}`` envelope shaped like a model response."""
    return {"data": site_spec_to_data(parse_intent(prompt)), "config": builtin_config()}
