"""
Protocol Templates Library

Built-in library of health protocol templates (weight loss, longevity, parasite
cleanse, ailment-focused programs). Each template carries a default
configuration skeleton that the wizard seeds its customization step from.
"""

from typing import Dict, List, Any, Optional, Iterable
import copy

from evofit.core.errors import NotFoundError
from evofit.services.protocols.schemas import Intensity, ProtocolTemplate, ProtocolType


class ProtocolTemplatesLibrary:
    """Immutable catalog of protocol templates"""

    RECOMMENDATION_LIMIT = 5

    def __init__(self, templates: Optional[Iterable[ProtocolTemplate]] = None):
        loaded = list(templates) if templates is not None else self._load_all_templates()
        self._templates = tuple(loaded)
        self._by_id = {t.id: t for t in self._templates}

    @property
    def templates(self) -> List[ProtocolTemplate]:
        return list(self._templates)

    def get_template(self, template_id: str) -> ProtocolTemplate:
        """Get specific template by ID"""
        template = self._by_id.get(template_id)
        if template is None:
            raise NotFoundError("template", template_id)
        return template

    def default_configuration(self, template_id: str) -> Dict[str, Any]:
        """Fresh copy of a template's configuration skeleton"""
        template = self.get_template(template_id)
        return {
            "template_id": template.id,
            "type": template.protocol_type.value,
            "duration": template.default_duration,
            "intensity": template.default_intensity.value,
            "target_audience": list(template.target_audience),
            "tags": list(template.tags),
            **copy.deepcopy(template.base_config),
        }

    def list_templates(
        self,
        category: Optional[str] = None,
        protocol_type: Optional[ProtocolType] = None,
        intensity: Optional[Intensity] = None,
    ) -> List[ProtocolTemplate]:
        """Get templates matching specified criteria"""
        matching = []
        for template in self._templates:
            if category and template.category != category:
                continue
            if protocol_type and template.protocol_type != ProtocolType(protocol_type):
                continue
            if intensity and template.default_intensity != Intensity.parse(intensity):
                continue
            matching.append(template)
        return matching

    def categories(self) -> List[str]:
        seen: List[str] = []
        for template in self._templates:
            if template.category not in seen:
                seen.append(template.category)
        return seen

    def search(self, text: str) -> List[ProtocolTemplate]:
        """Case-insensitive match on name, description and tags"""
        needle = (text or "").strip().lower()
        if not needle:
            return self.templates
        results = []
        for template in self._templates:
            haystack = " ".join([template.name, template.description, *template.tags]).lower()
            if needle in haystack:
                results.append(template)
        return results

    def recommend(
        self,
        age: Optional[int] = None,
        conditions: Optional[List[str]] = None,
        goals: Optional[List[str]] = None,
        experience: Optional[str] = None,
    ) -> List[ProtocolTemplate]:
        """Rank templates by overlap between the profile and each template's audience and focus"""
        terms = [t.lower() for t in (conditions or []) + (goals or []) if t]
        scored = []
        for index, template in enumerate(self._templates):
            score = 0
            if experience and experience.lower() in template.target_audience:
                score += 3
            for focus in template.health_focus:
                focus_text = focus.replace("_", " ")
                if any(term in focus_text or focus_text in term for term in terms):
                    score += 2
            if age is not None and age >= 65 and template.default_intensity == Intensity.intensive:
                score -= 2
            scored.append((score, index, template))
        # Stable: equal scores keep catalog order
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [template for _, _, template in scored[: self.RECOMMENDATION_LIMIT]]

    def _load_all_templates(self) -> List[ProtocolTemplate]:
        """Load all available protocol templates"""
        return [
            self._create_beginner_weight_loss(),
            self._create_advanced_fat_loss(),
            self._create_lean_muscle(),
            self._create_metabolic_health(),
            self._create_longevity(),
            self._create_longevity_intensive(),
            self._create_heart_health(),
            self._create_gentle_detox(),
            self._create_parasite_cleanse(),
            self._create_parasite_cleanse_intensive(),
            self._create_energy_enhancement(),
            self._create_custom(),
        ]

    def _create_beginner_weight_loss(self) -> ProtocolTemplate:
        """Gentle introduction to weight loss for newcomers"""
        return ProtocolTemplate(
            id="weight-loss-beginner",
            name="Beginner Weight Loss Protocol",
            description="A gentle introduction to weight loss focusing on sustainable habits and moderate calorie reduction.",
            protocol_type=ProtocolType.ailments,
            category="weight_loss",
            default_duration=90,
            default_intensity=Intensity.gentle,
            target_audience=("beginners", "sedentary_lifestyle"),
            health_focus=("weight_management", "metabolism", "energy_levels"),
            tags=("beginner-friendly", "sustainable", "moderate-deficit"),
            base_config={
                "calorie_deficit": 500,
                "macro_ratio": {"protein": 25, "carbs": 45, "fat": 30},
                "exercise_frequency": "3-4 times per week",
                "supplementation": ["multivitamin", "omega-3"],
                "restrictions": ["processed_foods", "sugary_drinks"],
                "hydration_goal": "2.5L daily",
                "sleep_target": "7-8 hours",
            },
        )

    def _create_advanced_fat_loss(self) -> ProtocolTemplate:
        """Structured fat loss for experienced dieters"""
        return ProtocolTemplate(
            id="fat-loss-advanced",
            name="Advanced Fat Loss Protocol",
            description="Intensive fat loss protocol with structured nutrition, carb cycling and intermittent fasting.",
            protocol_type=ProtocolType.ailments,
            category="weight_loss",
            default_duration=60,
            default_intensity=Intensity.intensive,
            target_audience=("advanced", "experienced_dieters"),
            health_focus=("fat_loss", "muscle_preservation", "metabolic_flexibility"),
            tags=("advanced", "intensive", "carb-cycling", "intermittent-fasting"),
            base_config={
                "calorie_deficit": 750,
                "macro_ratio": {"protein": 35, "carbs": 25, "fat": 40},
                "exercise_frequency": "6 times per week",
                "supplementation": ["whey_protein", "l_carnitine", "green_tea_extract", "multivitamin"],
                "restrictions": ["refined_carbs", "processed_foods", "alcohol", "high_sodium_foods"],
                "intermittent_fasting": "16:8",
                "carb_cycling": True,
            },
        )

    def _create_lean_muscle(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="lean-muscle",
            name="Lean Muscle Building Protocol",
            description="Moderate surplus with structured protein timing for lean gains.",
            protocol_type=ProtocolType.ailments,
            category="muscle_gain",
            default_duration=84,
            default_intensity=Intensity.moderate,
            target_audience=("intermediate", "muscle_building_focused"),
            health_focus=("muscle_gain", "strength", "recovery"),
            tags=("muscle-building", "lean-gains", "structured-nutrition"),
            base_config={
                "calorie_surplus": 300,
                "macro_ratio": {"protein": 30, "carbs": 45, "fat": 25},
                "exercise_frequency": "4-5 times per week",
                "supplementation": ["whey_protein", "creatine", "vitamin_d"],
            },
        )

    def _create_metabolic_health(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="metabolic-health",
            name="Metabolic Health Optimization",
            description="Blood sugar and insulin sensitivity focused nutrition with anti-inflammatory foods.",
            protocol_type=ProtocolType.ailments,
            category="general",
            default_duration=90,
            default_intensity=Intensity.moderate,
            target_audience=("metabolic_syndrome", "prediabetes", "insulin_resistance"),
            health_focus=("blood_sugar", "diabetes", "insulin_sensitivity", "inflammation"),
            tags=("metabolic-health", "blood-sugar", "anti-inflammatory"),
            base_config={
                "glycemic_focus": "low",
                "macro_ratio": {"protein": 30, "carbs": 30, "fat": 40},
                "supplementation": ["chromium", "berberine", "magnesium"],
                "monitoring": ["fasting_glucose", "hba1c"],
            },
        )

    def _create_longevity(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="longevity",
            name="Anti-Aging Longevity Protocol",
            description="Cellular health and mild caloric restriction for healthy aging.",
            protocol_type=ProtocolType.longevity,
            category="longevity",
            default_duration=90,
            default_intensity=Intensity.moderate,
            target_audience=("health_conscious", "longevity_focused", "middle_aged"),
            health_focus=("longevity", "cellular_health", "inflammation", "energy"),
            tags=("longevity", "anti-aging", "cellular-health"),
            base_config={
                "fasting_protocol": "14:10",
                "calorie_restriction_percent": 10,
                "antioxidant_focus": True,
                "supplementation": ["omega-3", "vitamin_d", "curcumin", "resveratrol"],
            },
        )

    def _create_longevity_intensive(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="longevity-intensive",
            name="Intensive Longevity Protocol",
            description="Extended fasting windows and significant caloric restriction for experienced clients.",
            protocol_type=ProtocolType.longevity,
            category="longevity",
            default_duration=120,
            default_intensity=Intensity.intensive,
            target_audience=("advanced", "longevity_focused"),
            health_focus=("longevity", "autophagy", "metabolic_flexibility"),
            tags=("longevity", "caloric-restriction", "extended-fasting", "intensive"),
            base_config={
                "fasting_protocol": "18:6",
                "calorie_restriction_percent": 25,
                "extended_fasts_per_month": 1,
                "supplementation": ["omega-3", "nmn", "spermidine", "turmeric", "garlic_extract"],
            },
        )

    def _create_heart_health(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="heart-health",
            name="Heart Health Optimization Protocol",
            description="Cardiovascular support through fiber, omega-3 and sodium management.",
            protocol_type=ProtocolType.ailments,
            category="cardiovascular",
            default_duration=90,
            default_intensity=Intensity.gentle,
            target_audience=("cardiovascular_risk", "hypertension", "high_cholesterol"),
            health_focus=("heart_health", "blood_pressure", "cholesterol"),
            tags=("heart-health", "cardiovascular", "blood-pressure"),
            base_config={
                "sodium_limit_mg": 1500,
                "fiber_target_g": 30,
                "supplementation": ["omega-3", "coq10", "magnesium"],
            },
        )

    def _create_gentle_detox(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="gentle-detox",
            name="Gentle Detox Protocol",
            description="Liver support through whole foods and hydration.",
            protocol_type=ProtocolType.ailments,
            category="detox",
            default_duration=21,
            default_intensity=Intensity.gentle,
            target_audience=("detox_beginners", "liver_support_needed"),
            health_focus=("liver_support", "digestion", "energy"),
            tags=("detox", "liver-support", "gentle-cleanse"),
            base_config={
                "hydration_goal": "3L daily",
                "supplementation": ["milk_thistle", "dandelion_root"],
                "restrictions": ["alcohol", "processed_foods"],
            },
        )

    def _create_parasite_cleanse(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="parasite-cleanse",
            name="Gentle Parasite Cleanse",
            description="Food-first parasite cleanse using anti-parasitic herbs and gut support.",
            protocol_type=ProtocolType.parasite_cleanse,
            category="therapeutic",
            default_duration=30,
            default_intensity=Intensity.moderate,
            target_audience=("parasite_symptoms", "digestive_issues"),
            health_focus=("parasite_elimination", "gut_health", "digestion"),
            tags=("parasite-cleanse", "gut-health", "food-first"),
            base_config={
                "phases": [
                    {"name": "preparation", "duration": 7, "supplements": ["probiotics", "digestive_enzymes"]},
                    {"name": "elimination", "duration": 16, "supplements": ["pumpkin_seed", "garlic", "papaya_seed"]},
                    {"name": "restoration", "duration": 7, "supplements": ["probiotics", "l_glutamine"]},
                ],
                "dietary_restrictions": ["sugar", "refined_carbs"],
            },
        )

    def _create_parasite_cleanse_intensive(self) -> ProtocolTemplate:
        """Three-phase cleanse with natural antimicrobials"""
        return ProtocolTemplate(
            id="parasite-cleanse-intensive",
            name="Comprehensive Parasite Cleanse",
            description="Systematic parasite elimination using natural antimicrobials and gut restoration.",
            protocol_type=ProtocolType.parasite_cleanse,
            category="therapeutic",
            default_duration=60,
            default_intensity=Intensity.intensive,
            target_audience=("parasite_symptoms", "digestive_issues", "immune_compromised"),
            health_focus=("parasite_elimination", "gut_health", "immune_system"),
            tags=("parasite-cleanse", "gut-health", "antimicrobial", "three-phase"),
            base_config={
                "phases": [
                    {"name": "preparation", "duration": 14, "supplements": ["digestive_enzymes", "probiotics", "magnesium"]},
                    {"name": "elimination", "duration": 30, "supplements": ["wormwood", "black_walnut", "cloves", "oregano_oil", "garlic"]},
                    {"name": "restoration", "duration": 16, "supplements": ["probiotics", "l_glutamine", "zinc", "vitamin_d"]},
                ],
                "dietary_restrictions": ["sugar", "refined_carbs", "dairy", "gluten"],
                "hydration_goal": "3L daily",
                "monitoring": ["stool_analysis", "symptom_tracking"],
            },
        )

    def _create_energy_enhancement(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="energy-enhancement",
            name="Energy Enhancement Protocol",
            description="Mitochondrial support and adaptogens for persistent fatigue.",
            protocol_type=ProtocolType.ailments,
            category="energy",
            default_duration=60,
            default_intensity=Intensity.moderate,
            target_audience=("chronic_fatigue", "low_energy", "adrenal_fatigue"),
            health_focus=("energy", "fatigue", "sleep", "stress"),
            tags=("energy", "fatigue", "mitochondrial", "adaptogens"),
            base_config={
                "supplementation": ["coq10", "b_complex", "ashwagandha", "rhodiola"],
                "sleep_target": "8 hours",
            },
        )

    def _create_custom(self) -> ProtocolTemplate:
        return ProtocolTemplate(
            id="custom",
            name="Custom Protocol",
            description="Blank protocol built entirely from the trainer's customizations.",
            protocol_type=ProtocolType.custom,
            category="custom",
            default_duration=30,
            default_intensity=Intensity.moderate,
            tags=("custom",),
        )


# Shared default catalog
templates_library = ProtocolTemplatesLibrary()
