# infrastructure/agents/content_tool.py
import asyncio
import hashlib
import html
import re
from typing import Dict, Any, List, Optional

# Keyword → industry profile used by the offline generator
INDUSTRY_PROFILES: List[Dict[str, Any]] = [
    {
        "keywords": ["coffee", "cafe", "bakery", "restaurant", "food", "kitchen"],
        "industry": "Food & Beverage",
        "market_size": "$900B US food service market",
        "growth_trend": "Steady 4-5% annual growth with strong delivery adoption",
        "trends": ["Online ordering", "Local sourcing", "Loyalty programs"],
        "palette": {"primary": "#6F4E37", "secondary": "#C8A27C", "accent": "#E07A5F"},
        "sections": ["hero", "menu", "about", "testimonials", "location", "cta"],
    },
    {
        "keywords": ["fitness", "gym", "yoga", "coach", "wellness", "health"],
        "industry": "Health & Fitness",
        "market_size": "$96B global fitness market",
        "growth_trend": "Hybrid in-person and online training growing quickly",
        "trends": ["Hybrid classes", "Wearable integration", "Community memberships"],
        "palette": {"primary": "#2A9D8F", "secondary": "#264653", "accent": "#E9C46A"},
        "sections": ["hero", "services", "pricing", "testimonials", "faq", "cta"],
    },
    {
        "keywords": ["shop", "store", "ecommerce", "boutique", "products", "clothing"],
        "industry": "Retail & E-commerce",
        "market_size": "$5.8T global e-commerce market",
        "growth_trend": "Mobile and social commerce driving double-digit growth",
        "trends": ["Mobile commerce", "Social selling", "Personalized recommendations"],
        "palette": {"primary": "#3D5A80", "secondary": "#98C1D9", "accent": "#EE6C4D"},
        "sections": ["hero", "products", "features", "testimonials", "faq", "cta"],
    },
]

DEFAULT_PROFILE: Dict[str, Any] = {
    "industry": "Professional Services",
    "market_size": "$1.2T professional services market",
    "growth_trend": "Digital-first service delivery is becoming the norm",
    "trends": ["Online booking", "Subscription pricing", "AI-assisted workflows"],
    "palette": {"primary": "#1D3557", "secondary": "#457B9D", "accent": "#E63946"},
    "sections": ["hero", "services", "about", "pricing", "contact", "cta"],
}

STOP_WORDS = {"a", "an", "the", "for", "and", "with", "of", "in", "on", "to", "my", "that", "who"}


class MockBusinessContentTool:
    """Deterministic offline content generator for development and tests"""

    def __init__(self, latency_seconds: float = 0.0):
        self.latency_seconds = latency_seconds

    async def _simulate_latency(self):
        # Yield to the event loop even when no latency is configured
        await asyncio.sleep(self.latency_seconds)

    def _profile(self, prompt: str) -> Dict[str, Any]:
        text = prompt.lower()
        for profile in INDUSTRY_PROFILES:
            if any(keyword in text for keyword in profile["keywords"]):
                return profile
        return DEFAULT_PROFILE

    def _keywords(self, prompt: str) -> List[str]:
        words = re.findall(r"[a-zA-Z]+", prompt.lower())
        return [w for w in words if w not in STOP_WORDS and len(w) > 2]

    async def research_market(self, prompt: str) -> Dict[str, Any]:
        await self._simulate_latency()
        profile = self._profile(prompt)
        keywords = self._keywords(prompt)
        focus = " ".join(keywords[:3]) or "small business"

        return {
            "industry": profile["industry"],
            "market_size": profile["market_size"],
            "growth_trend": profile["growth_trend"],
            "competitors": [
                {
                    "name": f"{focus.title()} Co",
                    "description": f"Established provider of {focus}",
                    "strengths": ["Brand recognition", "Existing customer base"],
                    "weaknesses": ["Dated online experience", "Generic offering"],
                },
                {
                    "name": f"{focus.title()} Direct",
                    "description": f"Low-cost online {focus} option",
                    "strengths": ["Low prices"],
                    "weaknesses": ["Weak customer service"],
                },
            ],
            "trends": list(profile["trends"]),
            "target_audience": f"Local customers looking for {focus}",
            "opportunities": [f"Underserved demand for premium {focus}", "Poor digital presence of incumbents"],
            "threats": ["Price competition", "Changing customer habits"],
        }

    async def draft_strategy(self, prompt: str, market_research: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        keywords = self._keywords(prompt)
        core = keywords[0].title() if keywords else "Venture"
        suffix = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:2].upper()
        audience = market_research.get("target_audience", "customers")

        return {
            "business_name": f"{core} Works {suffix}",
            "tagline": f"{core} done right, for {audience.lower()}",
            "business_canvas": {
                "value_proposition": f"The most reliable {core.lower()} experience in town",
                "problem": f"{audience} struggle to find trustworthy {core.lower()} options",
                "solution": f"A modern {core.lower()} business with online booking and clear pricing",
                "customer_segments": [audience, "Repeat customers"],
                "channels": ["Website", "Social media", "Word of mouth"],
                "revenue_streams": [
                    {"name": "Core offering", "type": "transaction", "pricing": "Per purchase",
                     "description": f"Sales of {core.lower()} services"},
                ],
                "key_resources": ["Skilled staff", "Online presence"],
                "key_activities": ["Service delivery", "Marketing"],
                "key_partnerships": ["Local suppliers"],
                "cost_structure": [
                    {"item": "Staff", "type": "fixed", "amount": "$8,000/month"},
                    {"item": "Materials", "type": "variable", "amount": "20% of revenue"},
                ],
                "unfair_advantage": f"Deep local knowledge of {market_research.get('industry', 'the market')}",
            },
        }

    async def design_brand(self, prompt: str, business_name: str,
                           business_canvas: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        palette = self._profile(prompt)["palette"]

        return {
            "brand_colors": {
                **palette,
                "background": "#FFFFFF",
                "text": "#1A1A1A",
            },
            "brand_voice": (
                f"{business_name} speaks in a warm, confident and plain-spoken voice "
                f"that reinforces: {business_canvas.get('value_proposition', '')}"
            ),
            "logo_prompt": f"Minimal geometric mark for {business_name}",
        }

    async def generate_logo(self, logo_prompt: str) -> Optional[str]:
        await self._simulate_latency()
        digest = hashlib.sha256(logo_prompt.encode("utf-8")).hexdigest()[:12]
        return f"https://example.com/logos/{digest}.png"

    async def plan_website(self, prompt: str, business_name: str, tagline: str,
                           business_canvas: Dict[str, Any], brand_voice: str) -> Dict[str, Any]:
        await self._simulate_latency()
        section_types = self._profile(prompt)["sections"]
        sections = []
        for index, section_type in enumerate(section_types):
            content: Dict[str, Any] = {"heading": section_type.title()}
            if section_type == "hero":
                content = {"heading": business_name, "subheading": tagline,
                           "cta": "Get started"}
            elif section_type == "about":
                content["body"] = business_canvas.get("unfair_advantage", "")
            elif section_type in ("features", "services", "products", "menu"):
                content["items"] = [business_canvas.get("solution", "")]
            sections.append({"id": f"{section_type}-{index}", "type": section_type, "content": content})

        return {
            "pages": [{"name": "Home", "slug": "/", "sections": sections}],
            "navigation": [
                {"label": s["type"].title(), "href": f"#{s['id']}"} for s in sections if s["type"] != "hero"
            ],
            "footer": {
                "company_name": business_name,
                "tagline": tagline,
                "links": [{"label": "Contact", "href": "#contact"}],
            },
            "voice": brand_voice[:80],
        }

    async def render_website(self, website_structure: Dict[str, Any],
                             brand_colors: Dict[str, Any]) -> str:
        await self._simulate_latency()
        parts = []
        for page in website_structure.get("pages", []):
            for section in page.get("sections", []):
                heading = html.escape(str(section.get("content", {}).get("heading", "")))
                parts.append(f'<section id="{html.escape(section["id"])}"><h2>{heading}</h2></section>')

        style = (
            f"body{{background:{brand_colors.get('background', '#FFFFFF')};"
            f"color:{brand_colors.get('text', '#000000')}}}"
            f"h2{{color:{brand_colors.get('primary', '#000000')}}}"
        )
        return f"<html><head><style>{style}</style></head><body>{''.join(parts)}</body></html>"

    async def map_customer_journey(self, business_name: str, market_research: Dict[str, Any],
                                   website_structure: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        audience = market_research.get("target_audience", "Customers")
        touchpoints = [item["label"] for item in website_structure.get("navigation", [])][:3]

        return {
            "stages": [
                {
                    "name": stage,
                    "description": f"{audience} {verb} {business_name}",
                    "touchpoints": touchpoints or ["Website"],
                    "actions": [action],
                    "emotions": emotion,
                    "kpis": [kpi],
                }
                for stage, verb, action, emotion, kpi in [
                    ("Awareness", "discover", "Visit website", "Curious", "Site visits"),
                    ("Consideration", "compare", "Read reviews", "Hopeful", "Time on page"),
                    ("Purchase", "buy from", "Complete checkout", "Confident", "Conversion rate"),
                    ("Retention", "return to", "Book again", "Loyal", "Repeat rate"),
                ]
            ]
        }

    async def design_automations(self, business_name: str,
                                 customer_journey: Dict[str, Any]) -> List[Dict[str, Any]]:
        await self._simulate_latency()
        stage_names = [stage["name"] for stage in customer_journey.get("stages", [])]

        return [
            {
                "name": "Welcome sequence",
                "description": f"Introduce new contacts to {business_name}",
                "trigger": "New newsletter signup",
                "steps": [
                    {"action": "Send email", "details": "Welcome and brand story"},
                    {"action": "Send email", "details": "First-purchase offer", "delay": "2 days"},
                ],
                "tools": ["Email"],
            },
            {
                "name": "Win-back",
                "description": f"Re-engage customers after the {stage_names[-1] if stage_names else 'purchase'} stage",
                "trigger": "No purchase in 60 days",
                "steps": [{"action": "Send email", "details": "We miss you offer"}],
                "tools": ["Email", "CRM"],
            },
        ]
