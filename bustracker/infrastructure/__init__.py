# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - remote/: Firestore document store (cross-device durability)
# - llm/: OpenRouter inference (sentiment, delay reasons, chat)
# - persistence/: SQLite local cache
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
