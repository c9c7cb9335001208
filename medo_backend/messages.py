"""Localized user-facing strings (Arabic first, English second)."""

MESSAGES = {
    "chat_fallback": {
        "ar": "عذراً، لم أتمكن من معالجة طلبك.",
        "en": "Sorry, I could not process your request.",
    },
    "summary_fallback": {
        "ar": "عذراً، لم أتمكن من تلخيص النص.",
        "en": "Sorry, I could not summarize the text.",
    },
    "ai_unavailable": {
        "ar": "فشل الاتصال بمساعد الذكاء الاصطناعي.",
        "en": "Failed to connect to the AI assistant.",
    },
    "ai_quota": {
        "ar": "تم تجاوز الحصة. يرجى الانتظار قليلاً.",
        "en": "Quota exceeded. Please wait a moment.",
    },
    "file_too_large": {
        "ar": "الرجاء اختيار ملف أصغر من {limit_mb} ميجابايت.",
        "en": "Please choose a file smaller than {limit_mb}MB.",
    },
    "invalid_file_type": {
        "ar": "الرجاء اختيار ملف صورة أو PDF فقط.",
        "en": "Please select an image or PDF file only.",
    },
    "images_only": {
        "ar": "يرجى تحديد ملفات صور فقط.",
        "en": "Please select image files only.",
    },
    "content_required": {
        "ar": "الرجاء إدخال نص أو رفع ملف لتوليد الأسئلة.",
        "en": "Please enter text or upload a file to generate questions.",
    },
    "message_required": {
        "ar": "الرجاء كتابة رسالة أو إرفاق ملف.",
        "en": "Please type a message or attach a file.",
    },
    "no_files_selected": {
        "ar": "الرجاء اختيار ملف واحد على الأقل.",
        "en": "Please select at least one file.",
    },
    "pdf_missing_info": {
        "ar": "الرجاء اختيار صورة واحدة على الأقل وإدخال اسم لملف الـ PDF.",
        "en": "Please select at least one image and enter a name for the PDF file.",
    },
    "pdf_failed": {
        "ar": "فشل تحويل الصور إلى PDF.",
        "en": "Failed to convert the images to PDF.",
    },
    "upload_summary": {
        "ar": "تم رفع {succeeded} من {total} ملفات بنجاح.",
        "en": "{succeeded} of {total} succeeded.",
    },
    "metadata_write_failed": {
        "ar": "لم نتمكن من حفظ معلومات الملف. قد تكون هناك مشكلة في الصلاحيات.",
        "en": "Could not save the file information. There may be a permissions problem.",
    },
    "file_deleted": {
        "ar": 'تم حذف ملف "{name}" نهائياً.',
        "en": 'The file "{name}" was permanently deleted.',
    },
    "file_metadata_only_deleted": {
        "ar": 'تم حذف بيانات الملف "{name}"، لكن الملف لم يكن موجوداً في وحدة التخزين.',
        "en": 'The data for "{name}" was removed, but the file was already missing from storage.',
    },
    "file_delete_failed": {
        "ar": "لا يمكن حذف الملف.",
        "en": "The file could not be deleted.",
    },
    "file_not_found": {
        "ar": "الملف غير موجود.",
        "en": "File not found.",
    },
    "recording_missing_info": {
        "ar": "لا يوجد تسجيل صوتي أو لم يتم إدخال اسم للملف.",
        "en": "There is no recording or no file name was entered.",
    },
    "transcript_heading": {
        "ar": "النص الأصلي:",
        "en": "Original text:",
    },
    "summary_heading": {
        "ar": "الملخص:",
        "en": "Summary:",
    },
}


def t(key: str, language: str = "ar", **kwargs) -> str:
    """Look up a message, falling back to Arabic for unknown languages."""
    variants = MESSAGES[key]
    text = variants.get(language, variants["ar"])
    return text.format(**kwargs) if kwargs else text
