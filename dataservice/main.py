import sys
import os
import yaml
import argparse
import uvicorn
from loguru import logger
from pymongo import MongoClient

from .api.app import create_app
from .messaging.pulsar import PulsarMessageQueue
from .services.documents import DocumentService
from .services.notifications import log_notification
from .services.todos import TodoService
from .stores.database import (
    check_database_connection,
    create_db_engine,
    create_session_factory,
    init_schema,
)
from .stores.documents import DocumentStore
from .stores.todos import TodoStore


def create_parser():
    parser = argparse.ArgumentParser(
        description="dataservice",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=str,
        default="./config.yaml",
        metavar="FILE",
        help="YAML config file",
    )

    return parser


def load_config(path: str) -> dict:
    config_path = os.path.join(os.getcwd(), path)

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
            logger.info("Config loaded successfully.")
            return config
    except FileNotFoundError:
        logger.critical(f"Config file not found in '{config_path}'")
        sys.exit(1)
    except yaml.YAMLError as e:
        logger.critical(f"Syntax error in YAML file '{config_path}': {e}")
        sys.exit(1)


def configure_logging(config: dict):
    log_level = config.get("logging", {}).get("level", "INFO").upper()
    logger.remove()
    logger.add(sys.stderr, level=log_level, colorize=True)
    logger.info(f"Logger level set to: {log_level}")


def main():
    parser = create_parser()
    args = parser.parse_args()
    config = load_config(args.config)
    configure_logging(config)

    broker_config = config.get("broker", {})
    queue = PulsarMessageQueue(broker_config)
    if not queue.connect():
        logger.critical("Critical Pulsar initialization error. Exiting.")
        sys.exit(1)

    engine = create_db_engine(config.get("database", {}))
    init_schema(engine)
    todo_store = TodoStore(create_session_factory(engine))

    mongo_config = config.get("mongo", {})
    mongo_client = MongoClient(
        mongo_config.get("url", "mongodb://localhost:27017"),
        serverSelectionTimeoutMS=mongo_config.get("server_selection_timeout_ms", 5000),
    )
    collection = mongo_client[mongo_config.get("database", "PocDb")][
        mongo_config.get("collection", "documents")
    ]
    document_store = DocumentStore(collection)

    listeners = [
        (destination, log_notification)
        for destination in broker_config.get("consuming", {}).get("listeners", [])
    ]
    if listeners:
        logger.debug(f"Configured {len(listeners)} notification listener(s).")

    app = create_app(
        TodoService(todo_store, queue),
        DocumentService(document_store, queue),
        queue,
        health_checks={
            "sql": lambda: check_database_connection(engine),
            "mongo": document_store.ping,
        },
        listeners=listeners,
    )

    http_config = config.get("http", {})
    try:
        uvicorn.run(
            app,
            host=http_config.get("host", "0.0.0.0"),
            port=http_config.get("port", 8080),
            log_level=config.get("logging", {}).get("level", "INFO").lower(),
        )
    finally:
        mongo_client.close()
        engine.dispose()
        logger.success("dataservice shut down successfully.")


if __name__ == "__main__":
    main()
