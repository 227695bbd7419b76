from fastapi import APIRouter

from healthbot import settings

router = APIRouter()


@router.get("/")
async def root():
    return {
        "status": "HealthBot Assistant is Running",
        "features": ["symptom_assessment", "emergency_detection", "medication_reminders", "health_education"],
        "endpoints": {
            "whatsapp_webhook": "/webhook/whatsapp",
            "sms_webhook": "/webhook/sms",
            "messages": "/api/assistant/messages",
            "medications": "/api/assistant/users/{user_id}/medications",
            "status": "/api/assistant/status",
        },
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    from healthbot.gateway.setup import get_gateway

    gateway = get_gateway()
    return {
        "status": "healthy",
        "service": "healthbot",
        "port": settings.PORT,
        "gateway": gateway.health_check() if gateway else {"healthy": False},
    }
