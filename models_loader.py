"""
===========================================================================
models_loader.py — Chat Model Loading Module
===========================================================================

PURPOSE:
    This file loads the local text model that answers chat questions.
    Models are GGUF files run through llama.cpp ("llama-cpp-python").

KEY CONCEPTS:
    - Loading a model reads a multi-GB file into memory, so it is done
      once and the object is kept in a GLOBAL variable (llm).
    - "n_ctx" = context length, it has to fit the page context chunks
      plus the last few messages.
    - llama_cpp is imported lazily inside _load_gguf_model so the web app
      (and its tests) start without it being installed.

USED BY:
    routes/chat_routes.py
===========================================================================
"""

import logging
import os

from config_loader import config

logger = logging.getLogger(__name__)

llm = None                      # The loaded model object (None = not loaded)
current_text_model_name = None  # Name of the currently loaded model


def load_text_model(model_name: str = None):
    """
    Load a text model by name from config["text_models"].

    1. Look the model up by name, falling back to the FIRST one
    2. Skip loading if that model is already in memory
    3. Load it with llama.cpp

    Returns:
        The Llama object (has .create_chat_completion()) or None when no
        model is configured or the file could not be loaded.
    """
    global llm, current_text_model_name

    models = config.get("text_models", [])
    if not models:
        logger.warning("No text models configured.")
        return None

    selected_model = None
    if model_name:
        for m in models:
            if m["name"] == model_name:
                selected_model = m
                break

    if not selected_model:
        selected_model = models[0]

    if llm is not None and current_text_model_name == selected_model["name"]:
        return llm

    loaded = _load_gguf_model(selected_model)
    if loaded is not None:
        llm = loaded
        current_text_model_name = selected_model["name"]
    return loaded


def _load_gguf_model(model_config: dict):
    """
    Load a GGUF model using llama.cpp.

    Args:
        model_config : Dict from config.json with 'path', 'n_ctx',
                       'n_gpu_layers' and optionally 'chat_format'.

    Returns:
        Llama object on success, None on failure.
    """
    path = model_config.get("path", "")
    if not path or not os.path.exists(path):
        logger.error("Model path not found for %s: %r", model_config.get("name"), path)
        return None

    try:
        from llama_cpp import Llama
    except ImportError:
        logger.error("llama-cpp-python is not installed, install the 'llm' extra")
        return None

    logger.info("Loading Llama model: %s from %s", model_config["name"], path)
    try:
        return Llama(
            model_path=path,
            n_ctx=model_config.get("n_ctx", 2048),
            n_gpu_layers=model_config.get("n_gpu_layers", 0),
            chat_format=model_config.get("chat_format", "chatml"),
            verbose=False,
        )
    except Exception as e:
        # llama.cpp reports bad files with plain ValueError/RuntimeError
        logger.error("Error loading model %s: %s", model_config["name"], e)
        return None
