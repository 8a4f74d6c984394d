from django.urls import path
from . import views

app_name = 'cpe'

urlpatterns = [
    path('convertir/', views.convertir, name='convertir'),
]
