from routes.tasks import router as tasks_router
from routes.chat import router as chat_router
from routes.students import router as students_router

__all__ = ['tasks_router', 'chat_router', 'students_router']
