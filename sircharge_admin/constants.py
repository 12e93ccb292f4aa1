"""
SirCharge 管理ダッシュボード 共通定数定義

Firestoreコレクション名・サービス/オペレーション対応表・サブスクリプション既定値など
"""

# Firestoreコレクション
USERS = "users"
PROMPT_EXECUTIONS = "promptExecutions"
USAGE_DAILY = "usageDaily"
USAGE_MONTHLY = "usageMonthly"
PERFORMANCE_METRICS = "performanceMetrics"
PERFORMANCE_AGGREGATES = "performanceAggregates"
BEHAVIOR_SESSIONS = "behaviorSessions"
BEHAVIOR_EVENTS = "behaviorEvents"
PROMPT_CONFIGS = "promptConfigs"
PROMPT_VERSIONS = "promptVersions"
SUBSCRIPTION_CONFIG_PATH = ("config", "subscriptionTiers")
SUBSCRIPTION_VERSIONS = "subscriptionTierVersions"
NOTIFICATIONS = "notifications"
LEARNED_VOCABULARY = "learnedVocabulary"
COST_ALERTS = "costAlerts"
COST_ALERTING_CONFIG_PATH = ("config", "costAlerting")

# Firestoreのバッチ書き込み上限
FIRESTORE_BATCH_LIMIT = 500

# sourceTypeはserviceより優先してオペレーションを決定する
SERVICE_TO_OPERATION = {
    "OpenAIService": "chat_completion",
    "RAGEngine": "chat_completion",
    "QueryRAGServer": "chat_completion",
    "SentimentAnalysisService": "sentiment_analysis",
    "EntityExtractionService": "entity_extraction",
    "EventExtractionService": "event_extraction",
    "MemoryGeneratorService": "memory_generation",
    "SuggestionEngine": "suggestion",
    "LifeFeedGenerator": "life_feed",
}

SOURCE_TYPE_TO_OPERATION = {
    "embedding": "embedding",
    "vision": "vision",
    "transcription": "transcription",
    "tts": "tts",
    "rag": "chat_completion",
    "rag_stream": "chat_completion",
    "direct": "chat_completion",
    "direct_stream": "chat_completion",
    "custom_prompt": "chat_completion",
    "pinecone_query": "pinecone_query",
}

# サービス → 発生しうるオペレーション
SERVICE_OPERATIONS_MAP = {
    "OpenAIService": ["chat_completion", "embedding", "transcription", "vision", "tts"],
    "RAGEngine": ["embedding", "pinecone_query", "chat_completion"],
    "QueryRAGServer": ["embedding", "pinecone_query", "chat_completion"],
    "SentimentAnalysisService": ["sentiment_analysis"],
    "EntityExtractionService": ["entity_extraction"],
    "EventExtractionService": ["event_extraction"],
    "MemoryGeneratorService": ["memory_generation"],
    "LifeFeedGenerator": ["life_feed"],
    "DailySummaryService": ["chat_completion"],
    "KeywordGenerator": ["chat_completion"],
    "CarouselInsights": ["chat_completion"],
}

OPERATION_LABELS = {
    "embedding": "Search Indexing",
    "chat_completion": "AI Chat",
    "transcription": "Voice Transcription",
    "vision": "Photo Description",
    "tts": "Voice Synthesis",
    "pinecone_query": "Memory Search",
    "pinecone_upsert": "Memory Indexing",
    "pinecone_delete": "Memory Cleanup",
    "sentiment_analysis": "Mood Detection",
    "entity_extraction": "People & Places",
    "event_extraction": "Events & Dates",
    "memory_generation": "Memory Summaries",
    "suggestion": "Smart Suggestions",
    "life_feed": "Activity Posts",
}


def build_operation_services_map():
    """オペレーション → サービスの逆引き表を生成"""
    reverse = {op: [] for op in OPERATION_LABELS}
    for service, operations in SERVICE_OPERATIONS_MAP.items():
        for operation in operations:
            reverse.setdefault(operation, []).append(service)
    return reverse


OPERATION_SERVICES_MAP = build_operation_services_map()

# パフォーマンス計測の種類
METRIC_TYPES = [
    "app_startup",
    "screen_transition",
    "scroll_fps",
    "js_thread_fps",
    "api_response_time",
    "component_render",
]

# プロンプト設定の対応言語
SUPPORTED_LANGUAGES = [
    {"code": "en", "name": "English", "nativeName": "English"},
    {"code": "es", "name": "Spanish", "nativeName": "Español"},
    {"code": "fr", "name": "French", "nativeName": "Français"},
    {"code": "de", "name": "German", "nativeName": "Deutsch"},
    {"code": "it", "name": "Italian", "nativeName": "Italiano"},
    {"code": "pt", "name": "Portuguese", "nativeName": "Português"},
    {"code": "zh", "name": "Chinese", "nativeName": "中文"},
    {"code": "ja", "name": "Japanese", "nativeName": "日本語"},
    {"code": "ko", "name": "Korean", "nativeName": "한국어"},
]
LANGUAGE_CODES = [lang["code"] for lang in SUPPORTED_LANGUAGES]

PROMPT_SERVICES = [
    "SentimentAnalysisService",
    "EntityExtractionService",
    "EventExtractionService",
    "MemoryGeneratorService",
    "LifeFeedGenerator",
    "DailySummaryService",
    "DailyInsightService",
    "KeywordGenerator",
    "LifeConnectionsService",
    "ContentSummaryService",
    "OpenAIService",
    "RAGEngine",
    "QueryRAGServer",
    "CarouselInsights",
    "ChatSuggestions",
    "MoodInsightService",
]

PROMPT_STATUSES = ["draft", "published", "archived"]

# サブスクリプション（-1 = 無制限）
TIER_KEYS = ["basic", "premium", "pro"]

DEFAULT_BASIC_QUOTAS = {
    "messagesPerMonth": 50,
    "photosPerMonth": 10,
    "voiceMinutesPerMonth": 30,
    "maxVoiceRecordingSeconds": 30,
    "customActivityTypes": 11,
    "offlineMode": True,
    "webAccess": False,
    "maxTokensPerDay": 10000,
    "maxApiCallsPerDay": 100,
    "maxCostPerMonth": 5.0,
}

DEFAULT_PREMIUM_QUOTAS = {
    "messagesPerMonth": 250,
    "photosPerMonth": 100,
    "voiceMinutesPerMonth": 250,
    "maxVoiceRecordingSeconds": 120,
    "customActivityTypes": -1,
    "offlineMode": True,
    "webAccess": False,
    "maxTokensPerDay": 100000,
    "maxApiCallsPerDay": 1000,
    "maxCostPerMonth": 50.0,
}

DEFAULT_PRO_QUOTAS = {
    "messagesPerMonth": 1000,
    "photosPerMonth": 200,
    "voiceMinutesPerMonth": 1000,
    "maxVoiceRecordingSeconds": 300,
    "customActivityTypes": -1,
    "offlineMode": True,
    "webAccess": True,
    "maxTokensPerDay": 500000,
    "maxApiCallsPerDay": 5000,
    "maxCostPerMonth": 200.0,
}

DEFAULT_TIER_QUOTAS = {
    "basic": DEFAULT_BASIC_QUOTAS,
    "premium": DEFAULT_PREMIUM_QUOTAS,
    "pro": DEFAULT_PRO_QUOTAS,
}

# 通知
NOTIFICATION_TYPE_LABELS = {
    "event_reminder": "Event Reminders",
    "escalated_reminder": "Urgent Reminders",
    "daily_summary": "Daily Summary",
    "weekly_insights": "Weekly Insights",
    "fun_fact": "Fun Facts",
    "achievement": "Achievements",
    "location_alert": "Location Alerts",
    "pattern_reminder": "Pattern Reminders",
}

NOTIFICATION_STATUS_LABELS = {
    "sent": "Sent",
    "delivered": "Delivered",
    "opened": "Opened",
    "suppressed": "Suppressed",
    "dismissed": "Dismissed",
}

NOTIFICATION_STATUS_COLORS = {
    "sent": "#3B82F6",
    "delivered": "#10B981",
    "opened": "#8B5CF6",
    "suppressed": "#F59E0B",
    "dismissed": "#6B7280",
}

# コストアラート既定設定
DEFAULT_COST_ALERTING_CONFIG = {
    "enabled": True,
    "dailyCostThresholdUSD": 10.0,
    "monthlyCostThresholdUSD": 200.0,
    "perUserDailyCostThresholdUSD": 1.0,
    "spikeMultiplier": 3.0,
    "notifyEmails": [],
}
