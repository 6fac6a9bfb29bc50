"""
Kafka producer, storage consumer and monitoring consumer.
"""
