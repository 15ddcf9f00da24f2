from schoolhub.routers import auth, classes, news_posts, public_news, students

__all__ = [
    'auth',
    'classes',
    'news_posts',
    'public_news',
    'students',
]
