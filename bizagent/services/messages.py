"""Customer-facing reply texts in English and Hinglish."""
import re
from typing import Dict

DEFAULT_LANGUAGE = "en"

HINGLISH_WORDS = {
    "hai", "hoon", "aap", "kaise", "karo", "bhejo", "dena", "lena", "rupee",
    "rupey", "kal", "aaj", "mujhe", "chahiye", "karna", "batao", "bataiye",
    "kitna", "kitne", "nahi", "haan", "theek", "sahi",
}

_DEVANAGARI = re.compile(r"[\u0900-\u097F]")
_WORD = re.compile(r"[a-z]+")

MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "approval_pending": "⏳ Your request has been sent for admin approval. You will receive a response shortly.",
        "approval_approved": "✅ Your request has been approved!",
        "approval_rejected": "❌ Sorry, your request could not be approved. Please contact support.",
        "please_wait": "⏳ Please wait, your previous request is still awaiting approval.",
        "let_me_check": "Let me check that and get back to you.",
        "trouble": "Sorry, I'm having trouble right now. Please try again in a moment.",
        "clarification": "Sorry, I didn't fully understand. Could you tell me a bit more about what you need?",
        "executed": "✅ Done! Your request has been completed.",
        "execution_failed": "❌ We couldn't complete your request. Our team has been notified.",
        "in_progress": "⏳ Your request is already being processed. We will update you shortly.",
        "help": "I can help you with:\n1️⃣ Place an order\n2️⃣ Check prices\n3️⃣ View stock\n4️⃣ Generate invoice\n\nWhat would you like to do?",
    },
    "hinglish": {
        "approval_pending": "⏳ Aapki request admin ke approval ke liye bhej di gayi hai. Jald hi jawab milega.",
        "approval_approved": "✅ Aapki request approve ho gayi hai!",
        "approval_rejected": "❌ Maaf kijiye, aapki request approve nahi ho saki. Please support se contact karein.",
        "please_wait": "⏳ Thoda wait kijiye, aapki pichli request abhi approval ke liye pending hai.",
        "let_me_check": "Main check karke batata hoon.",
        "trouble": "Maaf kijiye, abhi thodi problem hai. Thodi der baad try karein.",
        "clarification": "Maaf kijiye, samajh nahi aaya. Thoda aur batayenge aapko kya chahiye?",
        "executed": "✅ Ho gaya! Aapki request complete ho gayi hai.",
        "execution_failed": "❌ Aapki request complete nahi ho payi. Hamari team ko bata diya gaya hai.",
        "in_progress": "⏳ Aapki request par kaam chal raha hai. Jald hi update milega.",
        "help": "Main help kar sakta hoon:\n1️⃣ Order karo\n2️⃣ Price check karo\n3️⃣ Stock dekho\n4️⃣ Invoice banao\n\nKya karna hai?",
    },
}


def detect_language(text: str) -> str:
    """Keyword heuristic. Devanagari script is answered in Hinglish."""
    text = text or ""
    if _DEVANAGARI.search(text):
        return "hinglish"
    if HINGLISH_WORDS & set(_WORD.findall(text.lower())):
        return "hinglish"
    return DEFAULT_LANGUAGE


def text(key: str, language: str = DEFAULT_LANGUAGE) -> str:
    table = MESSAGES.get(language) or MESSAGES[DEFAULT_LANGUAGE]
    return table.get(key) or MESSAGES[DEFAULT_LANGUAGE][key]
