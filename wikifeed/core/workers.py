"""
Background contexts that talk to the reader session through messages.

Each worker owns its own cache and state and is driven only by tagged
dictionaries posted to its inbox. Replies are read from its outbox.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from wikifeed.core.article import Article, Interaction, Recommendation
from wikifeed.core.buffer import BufferManager
from wikifeed.core.cache import TieredCache
from wikifeed.core.recommender import RecommendationEngine

logger = logging.getLogger(__name__)

Message = Dict[str, Any]
Handler = Callable[[Message], Awaitable[Optional[Message]]]


def error_message(error: Any) -> Message:
    return {'type': 'error', 'error': str(error)}


class BackgroundWorker:
    """
    Processes inbox messages one at a time on its own task.
    """
    name = 'worker'

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.outbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Handler] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Started {self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"Stopped {self.name}")

    def post(self, message: Message) -> None:
        self.inbox.put_nowait(message)

    async def next_message(self, timeout: Optional[float] = None) -> Message:
        if timeout is None:
            return await self.outbox.get()
        return await asyncio.wait_for(self.outbox.get(), timeout)

    async def handle(self, message: Message) -> Optional[Message]:
        """
        Dispatch one message to its handler.

        A request ``id`` on the message is echoed on the reply.

        Returns:
            The reply, if any; errors are turned into error messages
        """
        tag = message.get('type') if isinstance(message, dict) else None
        handler = self._handlers.get(tag)
        if handler is None:
            reply = error_message(f"Unknown message type: {tag}")
        else:
            try:
                reply = await handler(message)
            except Exception as e:
                logger.error(f"{self.name} failed handling {tag}: {e}")
                reply = error_message(e)

        if reply is not None and isinstance(message, dict) and 'id' in message:
            reply = dict(reply, id=message['id'])
        return reply

    async def _run(self) -> None:
        while True:
            message = await self.inbox.get()
            reply = await self.handle(message)
            if reply is not None:
                await self.outbox.put(reply)


class LoaderWorker(BackgroundWorker):
    """
    Keeps the look-ahead buffer full and hands out articles on request.
    """
    name = 'loader'

    def __init__(self, source, cache: Optional[TieredCache] = None, language: str = 'en', **buffer_options):
        super().__init__()
        self.cache = cache if cache is not None else TieredCache(language=language)
        self.buffer = BufferManager(source, cache=self.cache, language=language, **buffer_options)
        self._handlers = {
            'load': self._load,
            'prefetch': self._prefetch,
            'changeLanguage': self._change_language,
        }

    async def stop(self) -> None:
        await super().stop()
        await self.buffer.wait_idle()

    async def _load(self, message: Message) -> Message:
        language = message.get('language') or self.buffer.language
        count = int(message.get('count') or self.buffer.batch_size)
        if language != self.buffer.language:
            await self._change_language({'language': language})

        if self.buffer.is_filling:
            await self.buffer.wait_idle()
        if len(self.buffer) < count:
            await self.buffer.request_fill(count - len(self.buffer))
        articles: List[Article] = self.buffer.drain(count)
        return {'type': 'articles', 'articles': articles, 'language': language}

    async def _prefetch(self, message: Message) -> Message:
        language = message.get('language')
        if language and language != self.buffer.language:
            await self._change_language({'language': language})
        await self.buffer.top_up()
        return {'type': 'bufferStatus', 'count': len(self.buffer), 'language': self.buffer.language}

    async def _change_language(self, message: Message) -> Message:
        language = message['language']
        self.cache.clear_for_language(language)
        self.buffer.reset(language)
        logger.info(f"Loader switched to {language}")
        return await self._prefetch({'language': language})


class RecommendationWorker(BackgroundWorker):
    """
    Generates recommendations off the main context.
    """
    name = 'recommender'

    def __init__(self, engine: RecommendationEngine, session_id: str = 'default'):
        super().__init__()
        self.engine = engine
        self.session_id = session_id
        self._handlers = {
            'recommend': self._recommend,
            'initialize': self._initialize,
            'changeLanguage': self._change_language,
        }

    @staticmethod
    def _reply(recommendations: List[Recommendation], language: str) -> Message:
        return {'type': 'recommendations', 'recommendations': recommendations, 'language': language}

    async def _recommend(self, message: Message) -> Message:
        language = message.get('language')
        interactions = [
            i if isinstance(i, Interaction) else Interaction.from_dict(i)
            for i in message.get('interactions') or []
        ]
        recommendations = await self.engine.generate(
            interactions,
            language=language,
            session_id=message.get('session_id') or self.session_id,
            exclude_ids=message.get('exclude_ids') or (),
        )
        return self._reply(recommendations, language or self.engine.resolve_language(None))

    async def _initialize(self, message: Message) -> Message:
        language = message.get('language')
        recommendations = await self.engine.generate_from_categories(
            message.get('categories') or [],
            language,
            exclude_ids=message.get('exclude_ids') or (),
        )
        return self._reply(recommendations, language or self.engine.resolve_language(None))

    async def _change_language(self, message: Message) -> None:
        language = message['language']
        if self.engine.cache is not None:
            self.engine.cache.clear_for_language(language)
        self.engine.reset()
        logger.info(f"Recommender switched to {language}")
        return None
