"""
Health education content — disease fact sheets, prevention tips and the
rotating general replies.

Static reference text; the session picks which piece to send.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DiseaseInfo:
    name: str
    description: str
    symptoms: tuple[str, ...]
    prevention: tuple[str, ...]
    local_context: str
    risk_factors: tuple[str, ...]


DISEASES: dict[str, DiseaseInfo] = {
    "diabetes": DiseaseInfo(
        name="Diabetes Mellitus",
        description="A group of metabolic disorders with persistently high blood sugar.",
        symptoms=("Increased thirst", "Frequent urination", "Unexplained weight loss", "Fatigue", "Blurred vision"),
        prevention=(
            "Maintain a healthy weight",
            "Be physically active for 30 minutes a day",
            "Eat a balanced diet low in sugar and refined carbs",
            "Get regular blood sugar checks",
            "Avoid smoking and excess alcohol",
        ),
        local_context="India has over 77 million people with diabetes. Millets, bitter gourd and fenugreek are good additions to the diet.",
        risk_factors=("Family history", "Obesity", "Sedentary lifestyle", "Age over 45", "PCOS"),
    ),
    "hypertension": DiseaseInfo(
        name="High Blood Pressure (Hypertension)",
        description="Blood pressure in the arteries that stays higher than normal.",
        symptoms=("Often none", "Headaches", "Shortness of breath", "Nosebleeds", "Vision problems"),
        prevention=(
            "Keep salt below 5 g a day",
            "Exercise regularly",
            "Maintain a healthy weight",
            "Limit alcohol",
            "Manage stress with yoga or meditation",
        ),
        local_context="Common in urban India. Cut down on pickles and papad, which are high in salt.",
        risk_factors=("Age", "Family history", "Obesity", "High-salt diet", "Stress", "Smoking"),
    ),
    "dengue": DiseaseInfo(
        name="Dengue Fever",
        description="A mosquito-borne viral infection common in tropical regions.",
        symptoms=("High fever", "Severe headache", "Pain behind the eyes", "Muscle and joint pain", "Skin rash", "Nausea"),
        prevention=(
            "Remove stagnant water around your home",
            "Use mosquito nets and repellents",
            "Wear long-sleeved clothes",
            "Cover stored water",
        ),
        local_context="Peak season is after the monsoon (September to November). See a doctor early; do not take aspirin or ibuprofen.",
        risk_factors=("Monsoon season", "Urban areas", "Stagnant water", "Poor sanitation"),
    ),
    "malaria": DiseaseInfo(
        name="Malaria",
        description="A parasitic infection spread by the bite of infected Anopheles mosquitoes.",
        symptoms=("Fever with chills", "Sweating", "Headache", "Body ache", "Nausea and vomiting"),
        prevention=(
            "Sleep under insecticide-treated nets",
            "Use mosquito repellent, especially at dusk",
            "Remove standing water",
            "Get tested quickly if you have fever with chills",
        ),
        local_context="Most cases occur during and after the monsoon. Free testing and treatment are available at government health centres.",
        risk_factors=("Living in or travelling to endemic areas", "Monsoon season", "No mosquito protection"),
    ),
    "tuberculosis": DiseaseInfo(
        name="Tuberculosis (TB)",
        description="A bacterial infection that mainly affects the lungs and spreads through the air.",
        symptoms=("Cough for more than 2 weeks", "Coughing up blood", "Fever and night sweats", "Weight loss", "Chest pain"),
        prevention=(
            "Complete the full course of treatment if diagnosed",
            "Cover your mouth when coughing",
            "Keep rooms well ventilated",
            "BCG vaccination for infants",
        ),
        local_context="TB is curable. Free diagnosis and treatment are available under the national TB programme.",
        risk_factors=("Close contact with a TB patient", "Diabetes", "HIV", "Malnutrition", "Smoking"),
    ),
    "asthma": DiseaseInfo(
        name="Asthma",
        description="A long-term condition where the airways become inflamed and narrow.",
        symptoms=("Wheezing", "Shortness of breath", "Chest tightness", "Coughing at night"),
        prevention=(
            "Use your preventer inhaler as prescribed",
            "Avoid smoke, dust and other triggers",
            "Wear a mask when air quality is poor",
            "Keep an action plan agreed with your doctor",
        ),
        local_context="Air pollution and crop burning season can trigger attacks. Check daily air quality where you live.",
        risk_factors=("Family history", "Allergies", "Air pollution", "Smoking", "Respiratory infections"),
    ),
}

# Spelling and synonym variants → DISEASES key
TOPIC_ALIASES: dict[str, str] = {
    "diabetic": "diabetes",
    "sugar": "diabetes",
    "high blood pressure": "hypertension",
    "blood pressure": "hypertension",
    "bp": "hypertension",
    "tb": "tuberculosis",
}

EDUCATION_DISCLAIMER = (
    "*Important:* This is general information only. "
    "Please consult a healthcare professional for diagnosis and treatment."
)

UNKNOWN_TOPIC = (
    "I don't have detailed information about that yet. I can explain: "
    "diabetes, hypertension, dengue, malaria, tuberculosis and asthma.\n\n"
    "For anything else, please consult a healthcare professional."
)

GENERAL_TIPS = """🌟 *General Health Tips*

🍎 *Nutrition*
• Eat seasonal fruits and vegetables
• Choose whole grains like brown rice and millets
• Include protein: dal, paneer, eggs or fish
• Drink 8-10 glasses of water a day

🏃 *Activity*
• 30 minutes of moderate exercise daily
• Try yoga or pranayama
• Walk after meals

😴 *Sleep & Stress*
• 7-8 hours of sleep
• Practise deep breathing or meditation

🧼 *Hygiene*
• Wash hands often with soap
• Use mosquito nets and repellents"""

SEASONAL_TIPS = """🌦️ *Seasonal Health Tips*

*Monsoon (June-September)*
• Boil water before drinking
• Avoid street food and raw salads
• Use mosquito repellent to prevent dengue and malaria
• Keep your feet dry

*Winter (December-February)*
• Eat vitamin C rich foods
• Stay warm and get some sunlight for vitamin D

*Summer (March-May)*
• Drink plenty of fluids; use ORS if needed
• Avoid the sun between 10 AM and 4 PM
• Wear light, loose cotton clothes"""

_SEASON_WORDS = ("seasonal", "season", "monsoon", "rain", "summer", "winter", "heat")

GENERAL_REPLIES = [
    "I'm here to help with your health questions.\n\n"
    "I can help you:\n"
    "• Check your symptoms\n"
    "• Learn about common diseases\n"
    "• Set medication reminders\n"
    "• Find hospitals and emergency numbers\n\n"
    "What would you like to do?",

    "Namaste! I'm your health assistant.\n\n"
    "🩺 I can help assess symptoms (not a replacement for a doctor)\n"
    "💊 I can remind you to take your medicines\n"
    "🌍 I can reply in 10 Indian languages\n\n"
    "Please tell me your health concern.",

    "To help you better, please tell me:\n"
    "• Your symptoms or health concern\n"
    "• How long you've had it\n"
    "• Your city, so I can suggest nearby hospitals\n\n"
    "For serious concerns, always consult a qualified doctor.",
]


def find_topic(text: str) -> str | None:
    lowered = (text or "").lower()
    for key in DISEASES:
        if key in lowered:
            return key
    for alias, key in TOPIC_ALIASES.items():
        if f" {alias} " in f" {lowered} ":
            return key
    return None


def disease_fact_sheet(topic: str) -> str:
    info = DISEASES.get(topic)
    if info is None:
        return UNKNOWN_TOPIC
    lines = [f"📋 *{info.name}*", "", info.description, "", "🔍 *Common symptoms:*"]
    lines.extend(f"• {s}" for s in info.symptoms)
    lines.extend(["", "🛡️ *Prevention:*"])
    lines.extend(f"• {p}" for p in info.prevention)
    lines.extend(["", f"🇮🇳 {info.local_context}", "", "⚠️ *Risk factors:*"])
    lines.extend(f"• {r}" for r in info.risk_factors)
    lines.extend(["", EDUCATION_DISCLAIMER])
    return "\n".join(lines)


def health_tips(text: str) -> str:
    lowered = (text or "").lower()
    if any(word in lowered for word in _SEASON_WORDS):
        return SEASONAL_TIPS
    return GENERAL_TIPS


# Short follow-up tips sent after a low-urgency symptom check
QUICK_TIPS = [
    "💡 Tip: Drink 8-10 glasses of clean water a day, more in hot weather.",
    "💡 Tip: Wash your hands with soap before eating and after using the toilet.",
    "💡 Tip: Aim for 7-8 hours of sleep; rest helps your body recover.",
    "💡 Tip: A 30-minute walk most days keeps your heart and blood sugar healthy.",
    "💡 Tip: Use a mosquito net and repellent to prevent dengue and malaria.",
]
